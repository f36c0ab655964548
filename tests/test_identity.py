"""Tests for client identity rotation."""
import threading

import pytest

from clipfetch.services.identity import ClientIdentity, IdentityRotator


class TestIdentityRotator:
    """Tests for round-robin order and shared state."""

    def test_rotation_is_periodic(self, rotator: IdentityRotator) -> None:
        """Call i returns pool[i % P]."""
        names = [str(rotator.next()) for _ in range(7)]
        assert names == ["WEB", "MWEB", "ANDROID", "WEB", "MWEB", "ANDROID", "WEB"]

    def test_single_identity_pool(self) -> None:
        rotator = IdentityRotator([ClientIdentity("WEB")])
        assert {rotator.next().client for _ in range(3)} == {"WEB"}

    def test_empty_pool_rejected(self) -> None:
        with pytest.raises(ValueError):
            IdentityRotator([])

    def test_concurrent_callers_share_cursor(self) -> None:
        """Every identity is handed out equally often across threads."""
        pool = [ClientIdentity(name) for name in ("A", "B", "C", "D")]
        rotator = IdentityRotator(pool)
        seen: list[str] = []
        lock = threading.Lock()

        def _worker() -> None:
            for _ in range(100):
                client = rotator.next().client
                with lock:
                    seen.append(client)

        threads = [threading.Thread(target=_worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(seen) == 800
        assert {name: seen.count(name) for name in "ABCD"} == {name: 200 for name in "ABCD"}

    def test_from_settings_applies_proxy(self, monkeypatch: pytest.MonkeyPatch) -> None:
        from clipfetch.services import identity

        monkeypatch.setattr(identity.settings, "PYTUBE_CLIENTS", "web, tv")
        monkeypatch.setattr(identity.settings, "PYTUBE_PROXY", "http://proxy:3128")

        rotator = IdentityRotator.from_settings()

        assert [i.client for i in rotator.pool] == ["WEB", "TV"]
        assert rotator.pool[0].proxies == {"http": "http://proxy:3128", "https": "http://proxy:3128"}

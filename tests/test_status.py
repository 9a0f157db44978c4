import asyncio
import json

import pytest

from stalink import __version__
from stalink.state import status as status_module


def test_status_writer_publishes_snapshot(tmp_path):

    async def run() -> None:
        status_path = tmp_path / "run" / "status.json"
        snapshots = 0

        def snapshot() -> dict[str, object]:
            nonlocal snapshots
            snapshots += 1
            return {"link_state": "connected", "stats": {"recoveries": 2}}

        task = asyncio.create_task(status_module.status_writer(snapshot, status_path, 60))
        for _ in range(100):
            if status_path.exists():
                break
            await asyncio.sleep(0.01)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert snapshots == 1
        payload = json.loads(status_path.read_text())
        assert payload["link_state"] == "connected"
        assert payload["stats"] == {"recoveries": 2}
        assert payload["version"] == __version__
        assert payload["heartbeat_unix"] > 0

    asyncio.run(run())


def test_cleanup_status_file(tmp_path):
    status_path = tmp_path / "status.json"
    status_path.write_text("{}")

    status_module.cleanup_status_file(status_path)
    assert not status_path.exists()

    # Removing an absent file is not an error.
    status_module.cleanup_status_file(status_path)

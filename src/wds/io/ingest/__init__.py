from wds.io.ingest.base import FrameSource
from wds.io.ingest.http_snapshot import HttpSnapshotSource, candidate_urls

__all__ = ["FrameSource", "HttpSnapshotSource", "candidate_urls"]

from datetime import datetime
from typing import Optional


SNAPSHOT_KEY_FORMAT = '%Y_%m_%d__%H_%M.raft'


def generate_snapshot_key(now: Optional[datetime] = None) -> str:
    """
    Generate the S3 key for a snapshot.

    Format: YYYY_MM_DD__HH_MM.raft (local time, minute granularity)

    Two runs within the same minute produce the same key, so the later
    upload overwrites the earlier one.
    """
    if now is None:
        now = datetime.now()
    return now.strftime(SNAPSHOT_KEY_FORMAT)

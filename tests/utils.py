"""Shared test helpers for claimboard tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

T0 = datetime(2024, 12, 29, 14, 30, 22, tzinfo=timezone.utc)

SAMPLE_TASKS = """\
# Project Tasks

Work items for the API rollout.

## Phase 1: API

- [ ] Add health endpoint <!-- id:7 -->
- [ ] Add metrics endpoint <!-- id:8 -->
- [ ] Add auth middleware <!-- id:9 -->

## Phase 2: Docs

### Guides

- [ ] Write quickstart
- [x] Write changelog ~~@claude~~ ~~#20241229-120000-claude~~

```markdown
- [ ] Not a task, just an example
```
"""


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now

"""
services/countdown.py

시험 남은 시간 카운트다운.
고정된 시작 시각과 벽시계로 남은 시간을 계산하고, 1초마다 갱신한다.
남은 시간이 처음 0이 되는 순간 마감 콜백을 딱 한 번 호출한다.
"""

import asyncio
import logging
import math
import time
from typing import Callable, Optional

from config import TICK_INTERVAL_SECONDS

logger = logging.getLogger(__name__)


def running_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class Countdown:
    """
    Args:
        duration_seconds: 제한 시간 (초). 0 이하이면 시간 제한 없음 — 틱도, 마감도 없다.
        on_deadline:      마감 도달 시 한 번 호출되는 콜백.
        start_time:       시작 시각 (clock 기준). 기본값은 생성 시점.
        clock:            현재 시각 함수 (테스트에서 교체).
        interval:         틱 주기 (초).
        on_tick:          매 틱마다 남은 시간(초)을 전달받는 콜백 (선택).
    """

    def __init__(
        self,
        duration_seconds: int,
        on_deadline: Callable[[], None],
        start_time: Optional[float] = None,
        clock: Callable[[], float] = time.time,
        interval: float = TICK_INTERVAL_SECONDS,
        on_tick: Optional[Callable[[int], None]] = None,
    ) -> None:
        self.duration = max(0, int(duration_seconds or 0))
        self._on_deadline = on_deadline
        self._on_tick = on_tick
        self._clock = clock
        self._interval = interval
        self.start_time = clock() if start_time is None else start_time

        self._fired = False
        self._stopped = False
        self._task: Optional[asyncio.Task] = None

    @property
    def is_timed(self) -> bool:
        return self.duration > 0

    @property
    def fired(self) -> bool:
        return self._fired

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def remaining(self) -> int:
        """
        남은 시간 (초, 올림). 제한 시간이 모두 지나기 전에는 0이 되지 않는다.
        """
        elapsed = self._clock() - self.start_time
        return max(0, math.ceil(self.duration - elapsed))

    def tick(self) -> int:
        """
        한 번의 틱 처리. 남은 시간을 반환한다.
        정지되었거나 시간 제한이 없으면 마감 콜백을 호출하지 않는다.
        """
        remaining = self.remaining()
        if self._stopped or not self.is_timed:
            return remaining

        if self._on_tick is not None:
            self._on_tick(remaining)

        if remaining == 0 and not self._fired:
            self._fired = True
            logger.info("시험 시간 종료 (제한 %d초)", self.duration)
            self._on_deadline()
        return remaining

    def start(self) -> None:
        """이벤트 루프에 틱 태스크를 등록한다. 시간 제한이 없으면 아무것도 하지 않는다."""
        if not self.is_timed or self._stopped or self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    def stop(self) -> None:
        """즉시 정지. 이후 어떤 틱도 마감 콜백을 호출하지 않는다."""
        self._stopped = True
        if self._task is not None and not self._task.done():
            if self._task is not running_task():
                self._task.cancel()
        self._task = None

    async def _run(self) -> None:
        while not self._stopped and not self._fired:
            await asyncio.sleep(self._interval)
            self.tick()

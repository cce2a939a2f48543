"""
The MIT License (MIT)

Copyright (c) 2015-present Rapptz

Permission is hereby granted, free of charge, to any person obtaining a
copy of this software and associated documentation files (the "Software"),
to deal in the Software without restriction, including without limitation
the rights to use, copy, modify, merge, publish, distribute, sublicense,
and/or sell copies of the Software, and to permit persons to whom the
Software is furnished to do so, subject to the following conditions:

The above copyright notice and this permission notice shall be included in
all copies or substantial portions of the Software.

THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS
OR IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING
FROM, OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER
DEALINGS IN THE SOFTWARE.
"""

from __future__ import annotations

import random
import time
from typing import Optional, Union

__all__ = ('ExponentialBackoff',)


class ExponentialBackoff:
    """Randomised exponential delays for gateway reconnects.

    Every call to :meth:`delay` doubles the ceiling, starting at
    ``base * 2`` and stopping at ``base * 2**max_exp``. The returned delay
    is drawn uniformly between zero and that ceiling. A quiet period
    longer than ``base * 2**(max_exp + 1)`` seconds starts the sequence
    over.

    Parameters
    ----------
    base: :class:`int`
        Seconds in one step.
    max_exp: :class:`int`
        Highest exponent the ceiling grows to.
    integral: :class:`bool`
        Return whole seconds only.
    """

    def __init__(self, base: int = 1, *, max_exp: int = 10, integral: bool = False, seed: Optional[int] = None):
        self.base: int = base
        self.max_exp: int = max_exp
        self.integral: bool = integral
        self.attempts: int = 0
        self._quiet_period: int = base * 2 ** (max_exp + 1)
        self._last: float = time.monotonic()
        self._random = random.Random(seed)

    def reset(self) -> None:
        self.attempts = 0
        self._last = time.monotonic()

    def ceiling(self) -> int:
        """:class:`int`: Upper bound of the delay the current attempt may draw."""
        return self.base * 2**self.attempts

    def delay(self) -> Union[int, float]:
        now = time.monotonic()
        if now - self._last > self._quiet_period:
            self.attempts = 0
        self._last = now

        if self.attempts < self.max_exp:
            self.attempts += 1

        upper = self.ceiling()
        if self.integral:
            return self._random.randrange(0, upper)
        return self._random.uniform(0, upper)

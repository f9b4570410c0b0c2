"""
Learning-Rate Schedules
=======================

A schedule is any callable ``step -> rate``. The optimizer treats it as
opaque; these are the ones this package ships.

    ConstantSchedule(1e-3)                           1e-3 at every step
    LinearWarmupSchedule(base, warmup_steps=100)     ramps 0 -> base over 100 steps
    LinearDecaySchedule(base, slope=1e-4)            base * max(lb, 1 - slope * t)

Schedules compose: pass one schedule (or a float) as the ``base`` of another.

Usage:
    from wdadam.schedules import get_schedule

    lr = get_schedule("linear_warmup", base=1e-3, warmup_steps=1000)
    lr(0), lr(500), lr(5000)  # 0.0, 5e-4, 1e-3

Caution: with ``bias_correction_mode="compounding"`` the optimizer multiplies
its previous rate by the correction factor, so a schedule whose rate is 0 at
step 0 (plain warm-up) keeps the effective rate at 0 for the whole run.
"""

from typing import Any, Callable, Union

Schedule = Callable[[int], float]
ScheduleLike = Union[Schedule, float, dict]


def as_schedule(value: ScheduleLike) -> Schedule:
    """Coerce a float, a registry mapping, or a callable into a schedule."""
    if isinstance(value, dict):
        return get_schedule(**value)
    if callable(value):
        return value
    return ConstantSchedule(float(value))


class ConstantSchedule:
    def __init__(self, value: float):
        self.value = float(value)

    def __call__(self, step: int) -> float:
        return self.value

    def __repr__(self) -> str:
        return f"ConstantSchedule({self.value})"


class LinearWarmupSchedule:
    """Scale ``base`` linearly from 0 to 1 over ``warmup_steps`` steps.

    Args:
        base: Schedule (or float) reached at the end of warm-up.
        warmup_steps: Length of the ramp.
        warmup_offset: Steps before the ramp starts (rate is 0 there).
    """

    def __init__(self, base: ScheduleLike, warmup_steps: int, warmup_offset: int = 0):
        self.base = as_schedule(base)
        self.warmup_steps = int(warmup_steps)
        self.warmup_offset = int(warmup_offset)
        if self.warmup_steps <= 0:
            raise ValueError(f"Invalid warmup_steps: {warmup_steps}")
        if self.warmup_offset < 0:
            raise ValueError(f"Invalid warmup_offset: {warmup_offset}")

    def __call__(self, step: int) -> float:
        progress = max(0, step - self.warmup_offset) / self.warmup_steps
        return self.base(step) * min(1.0, progress)

    def __repr__(self) -> str:
        return (
            f"LinearWarmupSchedule({self.base!r}, warmup_steps={self.warmup_steps}, "
            f"warmup_offset={self.warmup_offset})"
        )


class LinearDecaySchedule:
    """Scale ``base`` by ``max(lower_bound, 1 - slope * (step - start_step))``.

    Before ``start_step`` the base rate is returned unchanged.
    """

    def __init__(
        self,
        base: ScheduleLike,
        slope: float,
        lower_bound: float = 0.0,
        start_step: int = 0,
    ):
        self.base = as_schedule(base)
        self.slope = float(slope)
        self.lower_bound = float(lower_bound)
        self.start_step = int(start_step)
        if self.slope < 0.0:
            raise ValueError(f"Invalid slope: {slope}")
        if not 0.0 <= self.lower_bound <= 1.0:
            raise ValueError(f"Invalid lower_bound: {lower_bound}")

    def __call__(self, step: int) -> float:
        if step < self.start_step:
            return self.base(step)
        factor = 1.0 - self.slope * (step - self.start_step)
        return self.base(step) * max(self.lower_bound, factor)

    def __repr__(self) -> str:
        return (
            f"LinearDecaySchedule({self.base!r}, slope={self.slope}, "
            f"lower_bound={self.lower_bound}, start_step={self.start_step})"
        )


SCHEDULE_REGISTRY: dict[str, type] = {
    "constant": ConstantSchedule,
    "linear_warmup": LinearWarmupSchedule,
    "linear_decay": LinearDecaySchedule,
}


def get_schedule(name: str, **kwargs: Any) -> Schedule:
    """Instantiate a schedule by its registry name.

    Args:
        name: One of the keys in SCHEDULE_REGISTRY.
        **kwargs: Forwarded to the schedule constructor. A ``base`` given as a
            mapping is built recursively.

    Returns:
        A schedule instance.
    """
    if name not in SCHEDULE_REGISTRY:
        available = ", ".join(sorted(SCHEDULE_REGISTRY.keys()))
        raise ValueError(f"Unknown schedule '{name}'. Available: {available}")
    return SCHEDULE_REGISTRY[name](**kwargs)


def list_schedules() -> list[str]:
    """Return sorted list of available schedule names."""
    return sorted(SCHEDULE_REGISTRY.keys())

"""Storage zone PID controller

Drives change temperature slowly, so the storage zone is polled every
``hd_polling_interval`` seconds and driven by a PID loop on the average
drive temperature. Gains are scaled with the polling interval expressed in
minutes:

    error      = hd_avg - target
    integral  += error * dt
    derivative = (error - previous_error) / dt
    duty       = old_duty + Kp*error + Ki*integral + Kd*derivative

The correction is added onto the persisted float duty, so sub-integer
corrections accumulate until they move the rounded command. A safety
override bypasses the loop entirely as soon as any drive reaches
``hd_max_allowed_temp``.
"""

import logging

import numpy as np

from .config import ControllerConfig
from .model import ControllerState, PIDBranch, PIDResult, round_half_up

FAIL_SAFE_DUTY = 100


class StoragePIDController:
    """PID duty-cycle controller for the storage fan zone

    The controller itself is stateless; the integral, previous error and
    persisted duty live in ControllerState.
    """

    def __init__(self, config: ControllerConfig):
        self.config = config
        self.logger = logging.getLogger(self.__class__.__name__)

    def step(self, state: ControllerState, hd_max, hd_avg) -> PIDResult:
        """Compute the next storage duty cycle

        Updates state.storage_duty, state.integral, state.previous_error and
        state.cpu_override_active.

        Args:
            state: Controller state; storage_duty is the old duty
            hd_max: Hottest drive [°C], None when there are no readings
            hd_avg: Average drive temperature [°C]

        Returns:
            PIDResult with the integer duty to command
        """
        cfg = self.config
        old_duty = state.storage_duty_command

        if hd_max is not None and hd_max >= cfg.hd_max_allowed_temp:
            # Integral is frozen while overridden; the derivative keeps
            # tracking the measured average.
            state.storage_duty = float(cfg.hd_duty_high)
            if hd_avg is not None:
                state.previous_error = hd_avg - cfg.hd_target_temp
            result = PIDResult(
                duty=cfg.hd_duty_high,
                duty_float=state.storage_duty,
                branch=PIDBranch.SAFETY,
                error=None if hd_avg is None else hd_avg - cfg.hd_target_temp,
            )
            if old_duty != result.duty:
                self.logger.warning("Drives are too hot, going to %d%%", cfg.hd_duty_high)
        elif hd_max is None or hd_max < 0 or hd_avg is None:
            state.storage_duty = float(FAIL_SAFE_DUTY)
            result = PIDResult(duty=FAIL_SAFE_DUTY, duty_float=state.storage_duty, branch=PIDBranch.INVALID)
            self.logger.warning("Drive temperature (%r) invalid, going to %d%%", hd_max, FAIL_SAFE_DUTY)
        else:
            result = self._pid(state, hd_avg)
            if old_duty != result.duty:
                self.logger.info("PID control new duty cycle is %d%%", result.duty)

        state.cpu_override_active = cfg.cpu_fans_cool_hd and result.duty >= cfg.hd_cpu_override_duty
        return result

    def _pid(self, state: ControllerState, hd_avg: float) -> PIDResult:
        cfg = self.config
        dt = cfg.hd_polling_minutes

        error = hd_avg - cfg.hd_target_temp
        state.integral += error * dt
        derivative = (error - state.previous_error) / dt

        p = cfg.kp * error
        i = cfg.ki * state.integral
        d = cfg.kd * derivative

        duty = float(np.clip(state.storage_duty + p + i + d, cfg.hd_duty_low, cfg.hd_duty_high))
        state.storage_duty = duty
        state.previous_error = error

        self.logger.info("Temperature error = %.2f", error)
        self.logger.debug("PID corrections are P = %.2f, I = %.2f and D = %.2f", p, i, d)

        return PIDResult(
            duty=round_half_up(duty),
            duty_float=duty,
            branch=PIDBranch.PID,
            error=error,
            p=p,
            i=i,
            d=d,
        )

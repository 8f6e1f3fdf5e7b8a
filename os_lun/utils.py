#    Licensed under the Apache License, Version 2.0 (the "License"); you may
#    not use this file except in compliance with the License. You may obtain
#    a copy of the License at
#
#         http://www.apache.org/licenses/LICENSE-2.0
#
#    Unless required by applicable law or agreed to in writing, software
#    distributed under the License is distributed on an "AS IS" BASIS, WITHOUT
#    WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied. See the
#    License for the specific language governing permissions and limitations
#    under the License.
#
"""Utilities and helper functions."""

import collections
import functools
import inspect
import logging as py_logging
import random
import re
import time
from typing import Any, Callable, Optional  # noqa: H301

from oslo_log import log as logging
from oslo_utils import encodeutils
from oslo_utils import reflection
from oslo_utils import strutils

from os_lun import exception


_time_sleep = time.sleep


def _sleep(secs: float) -> None:
    """Helper class to make it easier to work around tenacity's sleep calls.

    Apparently we are all idiots for wanting to test our code here [0], so this
    is a hack to be able to get retries to not actually sleep.

    [0] https://github.com/jd/tenacity/issues/25
    """
    _time_sleep(secs)


time.sleep = _sleep

import tenacity  # noqa


LOG = logging.getLogger(__name__)

XTERM_CONTROL_REGEX = re.compile(r'\x1B\[[0-9;]*[a-zA-Z]')


def _now() -> float:
    """Monotonic clock used to enforce retry budgets."""
    return time.monotonic()


class RetryPolicy(collections.namedtuple('RetryPolicy',
                                         ['initial_interval',
                                          'multiplier',
                                          'randomization_factor',
                                          'max_elapsed_time'])):
    """Exponential backoff schedule bounded by total elapsed time.

    The n-th wait is ``initial_interval * multiplier ** (n - 1)`` seconds,
    jittered by ``+/- randomization_factor`` of that value.  No wait starts
    if it would end after ``max_elapsed_time`` seconds since the first call.
    """
    __slots__ = ()


def polling_policy(max_elapsed_time: float) -> RetryPolicy:
    """Backoff used when polling for kernel state (roughly sqrt(2) growth)."""
    return RetryPolicy(initial_interval=1, multiplier=1.414,
                       randomization_factor=0.1,
                       max_elapsed_time=max_elapsed_time)


def format_policy(max_elapsed_time: float) -> RetryPolicy:
    return RetryPolicy(initial_interval=2, multiplier=2,
                       randomization_factor=0.1,
                       max_elapsed_time=max_elapsed_time)


class wait_randomized_exponential(object):
    """Tenacity wait strategy growing by a multiplier with bounded jitter."""

    def __init__(self, initial_interval: float, multiplier: float,
                 randomization_factor: float):
        self.initial_interval = initial_interval
        self.multiplier = multiplier
        self.randomization_factor = randomization_factor

    def __call__(self, retry_state) -> float:
        interval = self.initial_interval * (
            self.multiplier ** (retry_state.attempt_number - 1))
        delta = self.randomization_factor * interval
        return random.uniform(interval - delta, interval + delta)


def retry_until(probe: Callable[[], Any],
                policy: RetryPolicy,
                notify: Optional[Callable[[Exception, float], None]] = None,
                what: Optional[str] = None) -> Any:
    """Call probe until it succeeds, fails hard, or the budget runs out.

    The probe signals "try again later" by raising
    :class:`exception.NotYetReady`; any other exception is propagated right
    away without further attempts.  The probe is always called at least once.

    :param probe: Zero argument callable; its return value is returned.
    :param policy: RetryPolicy with the backoff schedule and time budget.
    :param notify: Optional callable receiving the NotYetReady exception and
                   the upcoming delay before every sleep.  It is only an
                   observer, errors it raises are logged and ignored.
    :param what: Description of what we are waiting for, used in logs and
                 in the timeout exception.
    :raises RetryTimeout: When waiting any longer would exceed
                          ``policy.max_elapsed_time``.
    """
    what = what or reflection.get_callable_name(probe)
    start = _now()

    def _elapsed():
        return _now() - start

    def _stop(retry_state):
        upcoming = getattr(retry_state, 'upcoming_sleep', 0) or 0
        return _elapsed() + upcoming > policy.max_elapsed_time

    def _before_sleep(retry_state):
        delay = retry_state.next_action.sleep
        exc = retry_state.outcome.exception()
        LOG.debug('%(what)s not ready (%(exc)s), waiting %(delay).2fs.',
                  {'what': what, 'exc': exc, 'delay': delay})
        if notify:
            try:
                notify(exc, delay)
            except Exception:
                LOG.exception('Retry notification for %s failed.', what)

    def _on_timeout(retry_state):
        elapsed = _elapsed()
        LOG.warning('Gave up waiting for %(what)s after %(elapsed).2f '
                    'seconds.', {'what': what, 'elapsed': elapsed})
        raise exception.RetryTimeout(
            what=what, elapsed=elapsed) from retry_state.outcome.exception()

    retrying = tenacity.Retrying(
        retry=tenacity.retry_if_exception_type(exception.NotYetReady),
        wait=wait_randomized_exponential(policy.initial_interval,
                                         policy.multiplier,
                                         policy.randomization_factor),
        stop=_stop,
        before_sleep=_before_sleep,
        retry_error_callback=_on_timeout)
    return retrying(probe)


def trace(f: Callable) -> Callable:
    """Trace calls to the decorated function.

    This decorator should always be defined as the outermost decorator so it
    is defined last. This is important so it does not interfere
    with other decorators.

    Using this decorator on a function will cause its execution to be logged at
    `DEBUG` level with arguments, return values, and exceptions.

    :returns: a function decorator
    """

    func_name = f.__name__

    @functools.wraps(f)
    def trace_logging_wrapper(*args, **kwargs):
        if len(args) > 0:
            maybe_self = args[0]
        else:
            maybe_self = kwargs.get('self', None)

        if maybe_self and hasattr(maybe_self, '__module__'):
            logger = logging.getLogger(maybe_self.__module__)
        else:
            logger = LOG

        # Don't bother going any further if DEBUG log level
        # is not enabled for the logger.
        if not logger.isEnabledFor(py_logging.DEBUG):
            return f(*args, **kwargs)

        all_args = inspect.getcallargs(f, *args, **kwargs)
        logger.debug('==> %(func)s: call %(all_args)r',
                     {'func': func_name,
                      # We have to stringify the dict first and don't use
                      # mask_dict_password because it results in an infinite
                      # recursion failure.
                      'all_args': strutils.mask_password(
                          str(all_args))})

        start_time = time.time() * 1000
        try:
            result = f(*args, **kwargs)
        except Exception as exc:
            total_time = int(round(time.time() * 1000)) - start_time
            logger.debug('<== %(func)s: exception (%(time)dms) %(exc)r',
                         {'func': func_name,
                          'time': total_time,
                          'exc': exc})
            raise
        total_time = int(round(time.time() * 1000)) - start_time

        if isinstance(result, dict):
            mask_result = strutils.mask_dict_password(result)
        elif isinstance(result, str):
            mask_result = strutils.mask_password(result)
        else:
            mask_result = result

        logger.debug('<== %(func)s: return (%(time)dms) %(result)r',
                     {'func': func_name,
                      'time': total_time,
                      'result': mask_result})
        return result
    return trace_logging_wrapper


def sanitize_output(output) -> str:
    """Return a copy of command output that is fit for the logs.

    Strips xterm color and cursor movement sequences and one trailing
    newline.  Never use the result for anything but logging.
    """
    if not output:
        return ''
    text = encodeutils.safe_decode(output, errors='ignore')
    text = XTERM_CONTROL_REGEX.sub('', text)
    if text.endswith('\n'):
        text = text[:-1]
    return text


def is_ipv6(address: str) -> bool:
    """Two or more colons means an IPv6 address (possibly with port)."""
    return address.count(':') >= 2


def parse_portal_ip(portal: str) -> str:
    """Extract the IP part of a portal string.

    '[fd20:8b1e::2]:3260,1038' -> '[fd20:8b1e::2]'
    '10.0.0.5:3260,1' -> '10.0.0.5'
    """
    if is_ipv6(portal):
        return portal.split(']')[0] + ']'
    return portal.split(':')[0]

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

"""Command execution primitive, privileged or not.

`execute_root()` (or the same via `execute(run_as_root=True)`) allows
any command to be run as the privileged user (default "root").  Every
iscsiadm, multipath, mkfs, mount and sysfs write issued by os-lun goes
through here.
"""

import signal
import threading

from oslo_concurrency import processutils as putils
from oslo_log import log as logging
from oslo_utils import strutils

from os_lun import exception
from os_lun import privileged
from os_lun import utils


LOG = logging.getLogger(__name__)


def custom_execute(*cmd, **kwargs):
    """Custom execute with a wall-clock timeout on top of Oslo's.

    Exactly one process is spawned.  With a non-zero timeout a timer races
    the process and, if it fires first, sends it the configured signal;
    once oslo has reaped the process an ExecutionTimeout is raised.  The
    timer is always cancelled when the process completes, so nothing
    started here outlives the call.

    :param timeout: Timeout defined in seconds
    :param signal: Signal to use to stop the process on timeout, defaults to
                   SIGKILL
    :param log_output: Log a sanitized copy of the output at debug level.
                       The returned output is never modified.
    :returns: Tuple with stdout and stderr
    """
    timeout = kwargs.pop('timeout', None)
    sig_end = kwargs.pop('signal', signal.SIGKILL)
    log_output = kwargs.pop('log_output', True)
    on_execute_call = kwargs.pop('on_execute', None)
    on_completion_call = kwargs.pop('on_completion', None)

    sanitized_cmd = strutils.mask_password(' '.join(cmd))
    timer = None
    timed_out = []

    def on_timeout(proc):
        LOG.warning('Stopping %(cmd)s with signal %(signal)s after %(time)ss.',
                    {'signal': sig_end, 'cmd': sanitized_cmd, 'time': timeout})
        timed_out.append(proc)
        proc.send_signal(sig_end)

    def on_execute(proc):
        nonlocal timer
        # Call user's on_execute method
        if on_execute_call:
            on_execute_call(proc)
        if timeout:
            timer = threading.Timer(timeout, on_timeout, (proc,))
            timer.daemon = True
            timer.start()

    def on_completion(proc):
        # This is always called regardless of success or failure
        if timer:
            timer.cancel()
        # Call user's on_completion method
        if on_completion_call:
            on_completion_call(proc)

    def raise_timeout(exit_code):
        proc = timed_out[0]
        msg = ('Time out on proc %(pid)s after waiting %(time)s seconds '
               'when running %(cmd)s' %
               {'pid': proc.pid, 'time': timeout, 'cmd': sanitized_cmd})
        LOG.debug(msg)
        raise exception.ExecutionTimeout(stdout='', stderr=msg,
                                         exit_code=exit_code,
                                         cmd=sanitized_cmd)

    try:
        out, err = putils.execute(on_execute=on_execute,
                                  on_completion=on_completion, *cmd, **kwargs)
    except putils.ProcessExecutionError as exc:
        if timed_out:
            raise_timeout(exc.exit_code)
        if log_output:
            LOG.debug('%(cmd)s failed with exit code %(code)s: %(out)s',
                      {'cmd': sanitized_cmd, 'code': exc.exit_code,
                       'out': utils.sanitize_output(exc.stdout)})
        raise

    # Killed processes may still look successful with check_exit_code=False
    if timed_out:
        raise_timeout(None)

    if log_output:
        LOG.debug('%(cmd)s output: %(out)s',
                  {'cmd': sanitized_cmd, 'out': utils.sanitize_output(out)})
    return out, err


def execute(*cmd, **kwargs):
    """NB: Raises processutils.ProcessExecutionError on failure."""
    run_as_root = kwargs.pop('run_as_root', False)
    kwargs.pop('root_helper', None)
    try:
        if run_as_root:
            return execute_root(*cmd, **kwargs)
        else:
            return custom_execute(*cmd, **kwargs)
    except OSError as e:
        # Note:
        #  putils.execute('bogus', run_as_root=True)
        # raises ProcessExecutionError(exit_code=1) (because there's a
        # "sh -c bogus" involved in there somewhere, but:
        #  putils.execute('bogus', run_as_root=False)
        # raises OSError(not found).
        #
        # Callers only catch ProcessExecutionError, so a process that could
        # not be launched is reported the same way.
        sanitized_cmd = strutils.mask_password(' '.join(cmd))
        raise putils.ProcessExecutionError(
            cmd=sanitized_cmd, description=str(e))


# See comment on `execute`
@privileged.default.entrypoint
def execute_root(*cmd, **kwargs):
    """NB: Raises processutils.ProcessExecutionError/OSError on failure."""
    return custom_execute(*cmd, shell=False, run_as_root=False, **kwargs)

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

"""Device mapper multipath helpers.

Multipath is optional: when the daemon is not running, or a LUN has a
single path, callers simply use the raw SCSI device.
"""

import re
from typing import List  # noqa: H301

from oslo_concurrency import processutils as putils
from oslo_config import cfg
from oslo_log import log as logging

from os_lun import exception
from os_lun import executor
from os_lun.i18n import _
from os_lun.initiator import sysfs
from os_lun import utils

LOG = logging.getLogger(__name__)
CONF = cfg.CONF

PID_REGEX = re.compile(r'^\d+$')
PID_RUNNING_REGEX = re.compile(r'pid \d+ running')


class LinuxMultipath(executor.Executor):
    def __init__(self, root_helper=None, execute=None, sysfs_view=None,
                 *args, **kwargs):
        super(LinuxMultipath, self).__init__(root_helper, execute=execute,
                                             *args, **kwargs)
        self.sysfs = sysfs_view or sysfs.SysfsView(
            CONF.os_lun.chroot_path_prefix)

    def is_running(self) -> bool:
        """Check whether multipathd is running on this host.

        pgrep has to return a single well formed pid, otherwise we ask the
        daemon itself and look for "pid <N> running".
        """
        try:
            out, _err = self._execute('pgrep', 'multipathd')
            pid = out.strip()
            if PID_REGEX.match(pid):
                LOG.debug('multipathd is running with pid %s', pid)
                return True
        except putils.ProcessExecutionError as exc:
            LOG.debug('pgrep multipathd failed: %s', exc)

        try:
            out, _err = self._execute_as_root('multipathd', 'show', 'daemon')
            if PID_RUNNING_REGEX.search(out):
                LOG.debug('multipathd is running')
                return True
        except putils.ProcessExecutionError as exc:
            LOG.debug('multipathd show daemon failed: %s', exc)

        return False

    def resolve_multipath_device(self, devices: List[str]) -> str:
        """Wait for the multipath device on top of some SCSI devices.

        :param devices: Device names, like ['sda', 'sdb'].
        :returns: The dm name of the first multipath device found for any of
                  the devices, or an empty string if there is nothing to
                  wait for or it didn't show up in time.
        """
        if len(devices) <= 1:
            LOG.debug('Skipping multipath discovery, %d device(s) specified.',
                      len(devices))
            return ''
        if not self.is_running():
            LOG.debug("Skipping multipath discovery, multipathd isn't "
                      "running.")
            return ''

        def _find_multipath_device():
            multipath_device = self.sysfs.find_multipath_device_for_devices(
                devices)
            if not multipath_device:
                raise exception.NotYetReady(
                    what='multipath device for %s' % ', '.join(devices))
            return multipath_device

        timeout = CONF.os_lun.multipath_discovery_timeout
        try:
            multipath_device = utils.retry_until(
                _find_multipath_device, utils.polling_policy(timeout),
                what='multipath device for %s' % ', '.join(devices))
        except exception.RetryTimeout:
            LOG.warning('Could not find multipath device after %s seconds.',
                        timeout)
            return ''

        LOG.debug('Multipath device %s found.', multipath_device)
        return multipath_device

    def flush(self, multipath_device: str) -> None:
        """Flush a multipath map before removing its paths.

        This is advisory cleanup, failures are only logged.
        """
        if not multipath_device:
            return
        LOG.debug('Flush multipath device %s', multipath_device)
        try:
            self._execute_as_root(
                'multipath', '-f', '/dev/' + multipath_device,
                timeout=CONF.os_lun.multipath_command_timeout)
        except putils.ProcessExecutionError as exc:
            LOG.warning('Error encountered flushing multipath device '
                        '%(dev)s: %(exc)s',
                        {'dev': multipath_device, 'exc': exc})

    def reload(self, multipath_device: str) -> None:
        """Make multipathd re-evaluate the geometry of a map after a resize."""
        if not multipath_device:
            raise exception.InvalidParameterValue(
                err=_('Cannot reload an empty multipath device.'))
        try:
            self._execute_as_root(
                'multipath', '-r', '/dev/' + multipath_device,
                timeout=CONF.os_lun.multipath_command_timeout)
        except putils.ProcessExecutionError as exc:
            LOG.error('Failed to reload multipath device %(dev)s: %(exc)s',
                      {'dev': multipath_device, 'exc': exc})
            raise exception.CommandExecutionFailed(
                cmd='multipath -r /dev/%s' % multipath_device) from exc
        LOG.debug('Multipath device %s reloaded.', multipath_device)


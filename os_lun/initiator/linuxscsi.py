# (c) Copyright 2013 Hewlett-Packard Development Company, L.P.
#
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

"""Generic linux scsi subsystem utilities.

   Scans the SCSI bus for new LUNs, waits for their block devices, and
   removes them again.
"""
import os
from typing import List, Optional  # noqa: H301

from oslo_concurrency import processutils as putils
from oslo_config import cfg
from oslo_log import log as logging

from os_lun import exception
from os_lun import executor
from os_lun.initiator import sysfs
from os_lun import utils

LOG = logging.getLogger(__name__)
CONF = cfg.CONF

SCAN_FILE = '/sys/class/scsi_host/host%d/scan'
RESCAN_FILE = '/sys/block/%s/device/rescan'
DELETE_FILE = '/sys/block/%s/device/delete'

# Commands whose output is logged when a LUN never shows up
DIAGNOSTIC_COMMANDS = (
    ('ls', '-al', '/dev'),
    ('ls', '-al', '/dev/mapper'),
    ('ls', '-al', '/dev/disk/by-path'),
    ('lsscsi',),
    ('lsscsi', '-t'),
    ('free',),
)


class LinuxSCSI(executor.Executor):
    def __init__(self, root_helper=None, execute=None, sysfs_view=None,
                 *args, **kwargs):
        super(LinuxSCSI, self).__init__(root_helper, execute=execute,
                                        *args, **kwargs)
        self.sysfs = sysfs_view or sysfs.SysfsView(
            CONF.os_lun.chroot_path_prefix)

    def echo_scsi_command(self, path, content) -> None:
        """Used to echo strings to scsi subsystem."""

        args = ["-a", path]
        kwargs = dict(process_input=content,
                      run_as_root=True,
                      root_helper=self._root_helper)
        self._execute('tee', *args, **kwargs)

    def scan_target_lun(self, lun: int, hosts: List[int]) -> None:
        """Ask each SCSI host to scan a single LUN (bus 0, target 0)."""
        self.list_all_devices()
        for host in hosts:
            path = self.sysfs.path(SCAN_FILE % host)
            content = '0 0 %d' % int(lun)
            self.echo_scsi_command(path, content)
            LOG.debug('Invoked single-LUN scan "%(content)s" on %(path)s',
                      {'content': content, 'path': path})
        self.list_all_devices()

    def wait_for_device_scan(self, lun: int, iqn: str,
                             should_scan: bool = True) -> List[str]:
        """Scan the LUN if needed and wait for its block devices to appear.

        First waits a short while for every path of the LUN, if they don't
        all show up it then settles for any single path in the remaining
        discovery time, multipath will pick up the rest later.

        :returns: List of block dirs that exist.
        :raises NoISCSIHostsFound: There is no session to the target.
        :raises RetryTimeout: No path appeared in time.
        """
        host_session_map = self.sysfs.get_host_session_map(iqn)
        if not host_session_map:
            raise exception.NoISCSIHostsFound(iqn=iqn)

        if should_scan:
            try:
                self.scan_target_lun(lun, sorted(host_session_map))
            except putils.ProcessExecutionError as exc:
                LOG.error('Could not scan for new LUN %(lun)s: %(exc)s',
                          {'lun': lun, 'exc': exc})

        paths = self.sysfs.get_sysfs_block_dirs_for_lun(lun,
                                                        host_session_map)
        LOG.debug('Scanning paths: %s', paths)

        def _all_paths_exist():
            missing = [path for path in paths if not os.path.exists(path)]
            if missing:
                raise exception.NotYetReady(what=', '.join(missing))
            return paths

        def _any_path_exists():
            found = [path for path in paths if os.path.exists(path)]
            if not found:
                raise exception.NotYetReady(what='any of ' + ', '.join(paths))
            return found

        discovery_timeout = CONF.os_lun.device_discovery_timeout
        all_paths_timeout = min(CONF.os_lun.all_paths_discovery_timeout,
                                discovery_timeout)
        try:
            found = utils.retry_until(
                _all_paths_exist, utils.polling_policy(all_paths_timeout),
                what='all paths of LUN %s' % lun)
            LOG.debug('Paths found: %s', found)
            return found
        except exception.RetryTimeout:
            LOG.debug('Not all paths of LUN %s are present, waiting for any '
                      'of them.', lun)

        try:
            found = utils.retry_until(
                _any_path_exists,
                utils.polling_policy(discovery_timeout - all_paths_timeout),
                what='any path of LUN %s' % lun)
        except exception.RetryTimeout:
            LOG.warning('Could not find devices for LUN %(lun)s after '
                        '%(time)s seconds.',
                        {'lun': lun, 'time': discovery_timeout})
            self.dump_diagnostics()
            raise

        LOG.debug('Paths found: %s', found)
        return found

    def dump_diagnostics(self) -> None:
        """Log what the host sees, purely for troubleshooting."""
        for cmd in DIAGNOSTIC_COMMANDS:
            try:
                self._execute(*cmd)
            except putils.ProcessExecutionError as exc:
                LOG.debug('Diagnostic command %(cmd)s failed: %(exc)s',
                          {'cmd': ' '.join(cmd), 'exc': exc})

    def list_all_devices(self) -> None:
        """Log a snapshot of the block devices and sessions on the host."""
        try:
            dev_entries = sorted(os.listdir('/dev'))
        except OSError:
            dev_entries = []
        dm_devices = [name for name in dev_entries
                      if name.startswith(sysfs.MULTIPATH_PREFIX)]
        sd_devices = [name for name in dev_entries
                      if name.startswith(sysfs.SCSI_DISK_PREFIX)]
        sys_block = self.sysfs.listdir(sysfs.SYS_BLOCK_DIR)

        outputs = []
        for cmd in (('multipath', '-ll'), ('iscsiadm', '-m', 'session')):
            try:
                out, _err = self._execute(
                    *cmd, run_as_root=True, root_helper=self._root_helper,
                    timeout=CONF.os_lun.command_timeout, log_output=False)
            except putils.ProcessExecutionError as exc:
                out = str(exc)
            outputs.append(utils.sanitize_output(out))

        LOG.debug('Listing all iSCSI devices: /dev/dm-*: %(dm)s, '
                  '/dev/sd*: %(sd)s, /sys/block/*: %(sys)s, '
                  'multipath -ll output: %(mpath)s, '
                  'iscsiadm -m session output: %(sessions)s',
                  {'dm': dm_devices, 'sd': sd_devices, 'sys': sys_block,
                   'mpath': outputs[0], 'sessions': outputs[1]})

    def wait_for_device(self, device_path: str) -> None:
        """Wait for a device node like /dev/sdb to exist."""
        def _device_exists():
            if not os.path.exists(device_path):
                raise exception.NotYetReady(what='device ' + device_path)

        utils.retry_until(
            _device_exists,
            utils.polling_policy(CONF.os_lun.multipath_discovery_timeout),
            what='device %s' % device_path)
        LOG.debug('Device %s found.', device_path)

    def rescan_disk(self, device: str) -> None:
        """Make the kernel reread a disk, used to notice a grown LUN."""
        self.list_all_devices()
        path = self.sysfs.path(RESCAN_FILE % device)
        LOG.debug('Rescanning device %(dev)s with %(path)s',
                  {'dev': device, 'path': path})
        self.echo_scsi_command(path, '1')
        self.list_all_devices()

    def flush_device_io(self, device: str) -> None:
        """This is used to flush any remaining IO in the buffers.

        Failures are logged and ignored, the device is going away anyway.
        """
        device_path = '/dev/' + device
        try:
            LOG.debug("Flushing IO for device %s", device_path)
            self._execute('blockdev', '--flushbufs', device_path,
                          run_as_root=True, root_helper=self._root_helper,
                          timeout=CONF.os_lun.command_timeout)
        except putils.ProcessExecutionError as exc:
            LOG.warning("Failed to flush IO buffers prior to removing "
                        "device %(dev)s: %(code)s",
                        {'dev': device_path, 'code': exc.exit_code})

    def remove_scsi_device(self, device: str, exc=None,
                           flush: bool = True) -> None:
        """Removes a scsi device based upon its sdX name."""
        path = self.sysfs.path(DELETE_FILE % device)
        exc = exception.ExceptionChainer() if exc is None else exc
        if flush:
            self.flush_device_io(device)

        LOG.debug("Remove SCSI device %(device)s with %(path)s",
                  {'device': device, 'path': path})
        with exc.context(True, 'Removing %s failed', device):
            self.echo_scsi_command(path, "1")

    def remove_devices(self, devices: List[str], flush: bool = True) -> None:
        """Remove all the given SCSI devices.

        Every device is attempted even if some fail, then all the failures
        are raised together in an ExceptionChainer.
        """
        exc = exception.ExceptionChainer()
        self.list_all_devices()
        for device in devices:
            self.remove_scsi_device(device, exc=exc, flush=flush)
        self.list_all_devices()
        if exc:
            raise exc

    def get_device_size(self, device: str) -> Optional[int]:
        """Get the size in bytes of a volume."""
        (out, _err) = self._execute('blockdev', '--getsize64',
                                    device, run_as_root=True,
                                    root_helper=self._root_helper,
                                    timeout=CONF.os_lun.command_timeout)
        var = str(out.strip())
        if var.isnumeric():
            return int(var)
        else:
            return None

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

"""Filesystem helpers: probe, format, mount, grow and clean up.

The actual work is done by the usual external tools (blkid, mkfs.*, mount,
xfs_growfs, resize2fs...), this module only drives them and interprets
their results.
"""

import collections
import os
import re
from typing import List, Optional  # noqa: H301

from oslo_concurrency import processutils as putils
from oslo_config import cfg
from oslo_log import log as logging

from os_lun import exception
from os_lun import executor
from os_lun.i18n import _
from os_lun import initiator
from os_lun.initiator import linuxscsi
from os_lun import utils

LOG = logging.getLogger(__name__)
CONF = cfg.CONF

PROC_SELF_MOUNTINFO = '/proc/self/mountinfo'
DEV_PREFIX = '/dev/'

MKFS_COMMANDS = {
    initiator.FS_XFS: ('mkfs.xfs', '-f'),
    initiator.FS_EXT3: ('mkfs.ext3', '-F'),
    initiator.FS_EXT4: ('mkfs.ext4', '-F'),
}

BLKID_VALUE_REGEX = re.compile(r'([A-Z_]+)="([^"]*)"')
MOUNTINFO_ESCAPE_REGEX = re.compile(r'\\([0-7]{3})')

MountInfo = collections.namedtuple(
    'MountInfo', ['mount_id', 'parent_id', 'major_minor', 'root',
                  'mount_point', 'options', 'fstype', 'source',
                  'super_options'])

DFInfo = collections.namedtuple('DFInfo', ['target', 'source'])


def _unescape(field):
    # Spaces, tabs and backslashes are escaped as octal, like \040
    return MOUNTINFO_ESCAPE_REGEX.sub(lambda m: chr(int(m.group(1), 8)),
                                      field)


def parse_mountinfo(content: str) -> List[MountInfo]:
    """Parse the contents of a /proc/<pid>/mountinfo file.

    Each line looks like:
        36 35 98:0 /mnt1 /mnt2 rw,noatime master:1 - ext3 /dev/root rw

    The optional fields before the "-" separator are dropped.
    """
    mounts = []
    for line in content.splitlines():
        fields = line.split()
        if not fields:
            continue
        try:
            separator = fields.index('-', 6)
        except ValueError:
            LOG.warning('Ignoring malformed mountinfo line: %s', line)
            continue
        tail = fields[separator + 1:]
        if len(tail) < 2:
            LOG.warning('Ignoring malformed mountinfo line: %s', line)
            continue
        mounts.append(MountInfo(
            mount_id=fields[0], parent_id=fields[1], major_minor=fields[2],
            root=_unescape(fields[3]), mount_point=_unescape(fields[4]),
            options=fields[5], fstype=tail[0], source=_unescape(tail[1]),
            super_options=tail[2] if len(tail) > 2 else ''))
    return mounts


def list_mounts(path: str = PROC_SELF_MOUNTINFO) -> List[MountInfo]:
    with open(path) as f:
        return parse_mountinfo(f.read())


def _mounted_device_name(mount: MountInfo) -> Optional[str]:
    """Name of the device behind a mount entry, like 'dm-0' or 'sdb'.

    Sources under /dev are resolved through symlinks, other entries are
    identified by their root field.  Returns None when a /dev source
    cannot be resolved.
    """
    if mount.source.startswith(DEV_PREFIX):
        if not os.path.exists(mount.source):
            LOG.error('Could not resolve mount source %s.', mount.source)
            return None
        device = os.path.realpath(mount.source)
        return device[len(DEV_PREFIX):] if device.startswith(
            DEV_PREFIX) else device
    return mount.root.lstrip('/')


class LinuxFilesystem(executor.Executor):
    def __init__(self, root_helper=None, execute=None, scsi=None,
                 *args, **kwargs):
        super(LinuxFilesystem, self).__init__(root_helper, execute=execute,
                                              *args, **kwargs)
        self._scsi = scsi or linuxscsi.LinuxSCSI(root_helper, execute=execute)

    # Probing and formatting

    def get_fs_type(self, device: str) -> str:
        """Filesystem type on a device, or '' if it is unformatted.

        blkid exits with 2 both for an unformatted device and when it can't
        read it, so we wait for the device first and double check that an
        "unformatted" device is really blank.
        """
        self._scsi.wait_for_device(device)

        try:
            out, _err = self._execute_as_root(
                'blkid', device, timeout=CONF.os_lun.command_timeout)
        except exception.ExecutionTimeout:
            self._scsi.list_all_devices()
            raise
        except putils.ProcessExecutionError as exc:
            if exc.exit_code != initiator.BLKID_ERR_NOT_FOUND:
                LOG.error('Could not determine filesystem type of %(dev)s: '
                          '%(exc)s', {'dev': device, 'exc': exc})
                raise
            LOG.info('Could not get filesystem type of %s, checking it is '
                     'unformatted.', device)
            self.ensure_device_unformatted(device)
            return ''

        values = dict(BLKID_VALUE_REGEX.findall(out or ''))
        # A partition table counts as data, we must never format over it
        return values.get('TYPE') or values.get('PTTYPE') or ''

    def ensure_device_unformatted(self, device: str) -> None:
        """Check that the first 2MB of the device are all zeros."""
        out, _err = self._execute_as_root(
            'dd', 'if=' + device, 'bs=4096', 'count=512', 'status=none',
            timeout=CONF.os_lun.command_timeout, binary=True,
            log_output=False)
        if (out or b'').strip(b'\x00'):
            LOG.error('Device %s contains non-zero values.', device)
            raise exception.DeviceNotUnformatted(device=device)
        LOG.info('Device %s is unformatted.', device)

    def format_volume(self, device: str, fstype: str) -> None:
        """Create a filesystem, retrying failures for a while."""
        if fstype not in initiator.SUPPORTED_FILESYSTEMS:
            raise exception.UnsupportedFilesystem(fstype=fstype)
        cmd = MKFS_COMMANDS[fstype] + (device,)

        def _format():
            try:
                self._execute_as_root(*cmd)
            except putils.ProcessExecutionError as exc:
                raise exception.NotYetReady(
                    what='%s to succeed' % cmd[0]) from exc

        def _notify(exc, delay):
            LOG.debug('Format failed with %(cause)s, retrying in '
                      '%(delay).2fs.', {'cause': exc.__cause__,
                                        'delay': delay})

        timeout = CONF.os_lun.format_timeout
        try:
            utils.retry_until(_format, utils.format_policy(timeout),
                              notify=_notify,
                              what='format of %s' % device)
        except exception.RetryTimeout:
            LOG.warning('Could not format device %(dev)s after %(time)s '
                        'seconds.', {'dev': device, 'time': timeout})
            raise
        LOG.info('Device %(dev)s formatted with %(fstype)s.',
                 {'dev': device, 'fstype': fstype})

    # Mounts

    def is_mounted(self, source_device: str, mountpoint: str) -> bool:
        """Check whether a device is mounted on a path.

        With an empty source_device any mount on the path counts.
        """
        source_name = ''
        if source_device.startswith(DEV_PREFIX):
            source_name = source_device[len(DEV_PREFIX):]

        for mount in list_mounts():
            if mountpoint not in mount.mount_point:
                continue
            LOG.debug('Mountpoint found: %s', mount)
            if not source_device:
                return True
            if _mounted_device_name(mount) == source_name:
                LOG.debug('%(dev)s is mounted on %(mp)s',
                          {'dev': source_name, 'mp': mountpoint})
                return True

        LOG.debug('%(dev)s is not mounted on %(mp)s',
                  {'dev': source_device, 'mp': mountpoint})
        return False

    def get_device_name_from_mount(self, mountpoint: str) -> str:
        """Name of the device mounted on exactly this path, like 'dm-0'.

        Bind mounts of a device node are identified by their root field,
        as in get_mounted_devices.

        :raises VolumeDeviceNotFound: Nothing is mounted on the path or its
                                      device can't be resolved.
        """
        path = os.path.normpath(mountpoint)
        for mount in list_mounts():
            if os.path.normpath(mount.mount_point) == path:
                device = _mounted_device_name(mount)
                if device:
                    return device
                LOG.error('Could not resolve the device of mount %s.', mount)
                break
        raise exception.VolumeDeviceNotFound(device=mountpoint)

    def get_mounted_devices(self, mount_point_filter: Optional[str] = None
                            ) -> List[str]:
        """Device names, like 'dm-0', mounted on this host.

        :param mount_point_filter: Only consider mount points containing this
                                   string.
        """
        devices = []
        for mount in list_mounts():
            if mount_point_filter and (mount_point_filter not in
                                       mount.mount_point):
                continue
            device = _mounted_device_name(mount)
            if device:
                devices.append(device)
        return devices

    def mount_device(self, device: str, mountpoint: str, options: str = '',
                     is_mount_point_file: bool = False) -> None:
        """Mount a block device, creating the mount point if needed."""
        args = [device, mountpoint]
        if options:
            if options.startswith('-o '):
                options = options[3:]
            args = ['-o', options] + args

        try:
            mounted = self.is_mounted(device, mountpoint)
        except OSError as exc:
            LOG.warning('Could not check mounts: %s', exc)
            mounted = False
        exists = os.path.exists(mountpoint)
        LOG.debug('Already mounted: %(mounted)s, mountpoint exists: '
                  '%(exists)s', {'mounted': mounted, 'exists': exists})

        if not exists:
            try:
                if is_mount_point_file:
                    self.ensure_file_exists(mountpoint)
                else:
                    self.ensure_dir_exists(mountpoint)
            except (OSError, exception.InvalidParameterValue) as exc:
                LOG.warning('Could not create mount point %(mp)s: %(exc)s',
                            {'mp': mountpoint, 'exc': exc})

        if not mounted:
            try:
                self._execute_as_root('mount', *args)
            except putils.ProcessExecutionError as exc:
                LOG.error('Mount of %(dev)s on %(mp)s failed: %(exc)s',
                          {'dev': device, 'mp': mountpoint, 'exc': exc})
                raise

    def mount_nfs(self, export: str, mountpoint: str,
                  options: str = '') -> None:
        args = ['-t', 'nfs']
        if options:
            if options.startswith('-o '):
                options = options[3:]
            args += ['-o', options]
        args += [export, mountpoint]

        try:
            self._execute_as_root('mkdir', '-p', mountpoint)
        except putils.ProcessExecutionError as exc:
            LOG.warning('Mkdir of %(mp)s failed: %(exc)s',
                        {'mp': mountpoint, 'exc': exc})

        try:
            self._execute_as_root('mount', *args)
        except putils.ProcessExecutionError as exc:
            LOG.error('Error mounting NFS volume %(export)s on mountpoint '
                      '%(mp)s: %(exc)s',
                      {'export': export, 'mp': mountpoint, 'exc': exc})
            raise

    def umount(self, mountpoint: str) -> None:
        """Unmount a path, forcing it if the regular umount hangs."""
        timeout = CONF.os_lun.umount_timeout
        try:
            self._execute_as_root('umount', mountpoint, timeout=timeout)
            return
        except exception.ExecutionTimeout as exc:
            LOG.error('Umount of %(mp)s timed out, forcing it: %(exc)s',
                      {'mp': mountpoint, 'exc': exc})
        except putils.ProcessExecutionError as exc:
            LOG.error('Umount of %(mp)s failed: %(exc)s',
                      {'mp': mountpoint, 'exc': exc})
            raise

        try:
            self._execute_as_root('umount', mountpoint, '-f',
                                  timeout=timeout)
        except putils.ProcessExecutionError as exc:
            if 'not mounted' not in '%s %s' % (exc.stdout, exc.stderr):
                raise
            LOG.debug('%s is no longer mounted.', mountpoint)

    # Paths

    def ensure_dir_exists(self, path: str) -> None:
        if os.path.exists(path):
            if not os.path.isdir(path):
                raise exception.InvalidParameterValue(
                    err=_('Path exists but is not a directory: %s') % path)
            return
        os.makedirs(path, 0o755)

    def ensure_file_exists(self, path: str) -> None:
        if os.path.exists(path):
            if os.path.isdir(path):
                raise exception.InvalidParameterValue(
                    err=_('Path exists but is a directory: %s') % path)
            return
        os.close(os.open(path, os.O_CREAT | os.O_TRUNC | os.O_WRONLY, 0o600))

    def delete_resource(self, path: str) -> None:
        """Remove a file or empty directory, retrying until it is gone."""
        def _remove():
            try:
                if os.path.isdir(path) and not os.path.islink(path):
                    os.rmdir(path)
                else:
                    os.remove(path)
            except FileNotFoundError:
                pass
            except OSError as exc:
                LOG.debug('Failed to remove %(path)s: %(exc)s',
                          {'path': path, 'exc': exc})
                raise exception.NotYetReady(what='removal of ' + path)

        utils.retry_until(
            _remove,
            utils.polling_policy(CONF.os_lun.resource_deletion_timeout),
            what='deletion of %s' % path)
        LOG.debug('Resource %s deleted.', path)

    def remove_mount_point(self, path: str) -> None:
        self.umount(path)
        os.rmdir(path)

    def umount_and_remove_temporary_mount_point(self, staging_path: str
                                                ) -> None:
        tmp_dir = os.path.join(staging_path, initiator.TEMPORARY_MOUNT_DIR)
        if os.path.exists(tmp_dir):
            self.remove_mount_point(tmp_dir)

    # Sizes

    @staticmethod
    def get_filesystem_size(path: str) -> int:
        """Size in bytes of the filesystem mounted on a path."""
        stat = os.statvfs(path)
        return stat.f_blocks * stat.f_bsize

    def mount_filesystem_for_resize(self, device: str, staging_path: str,
                                    options: str = '') -> str:
        """Mount a device on a private directory below the staging path.

        Growing xfs needs a mount point, and so does reading the size.
        """
        tmp_mount_point = os.path.join(staging_path,
                                       initiator.TEMPORARY_MOUNT_DIR)
        self.mount_device(device, tmp_mount_point, options)
        return tmp_mount_point

    def expand_filesystem(self, cmd: str, cmd_arg: str,
                          mount_point: str) -> int:
        """Run a filesystem growth tool and return the new size.

        Not growing at all is only a warning.
        """
        pre_size = self.get_filesystem_size(mount_point)
        try:
            self._execute_as_root(cmd, cmd_arg)
        except putils.ProcessExecutionError as exc:
            LOG.error('Expanding filesystem failed: %s', exc)
            raise
        post_size = self.get_filesystem_size(mount_point)

        if post_size == pre_size:
            LOG.warning('Failed to expand filesystem on %(mp)s; '
                        'size=%(size)d', {'mp': mount_point,
                                          'size': post_size})
        return post_size

    def get_df_output(self) -> List[DFInfo]:
        """Mounted filesystems as reported by df, without the header."""
        try:
            out, _err = self._execute('df', '--output=target,source')
        except putils.ProcessExecutionError as exc:
            # Stale NFS handles make df fail while still listing the rest
            if not exc.stdout:
                LOG.error('Error encountered gathering df output: %s', exc)
                raise
            out = exc.stdout

        # First line is the header
        return [DFInfo(*line.split()[:2])
                for line in (out or '').strip().splitlines()[1:]
                if len(line.split()) > 1]

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

"""Attach, resize and detach iSCSI volumes.

The connector keeps no state between calls: everything it needs is either
in the publish info given by the caller or read back from the kernel, so
any operation can be retried from scratch after a failure.
"""

import time
from typing import List, Optional  # noqa: H301

from oslo_log import log as logging

from os_lun import exception
from os_lun.i18n import _
from os_lun import initiator
from os_lun.initiator import initiator_connector
from os_lun.initiator import linuxiscsi
from os_lun.initiator import linuxmultipath
from os_lun.initiator import publish_info as pinfo
from os_lun.initiator import sysfs
from os_lun import utils

LOG = logging.getLogger(__name__)

# Time given to the kernel to settle after removing or resizing devices
SETTLE_TIME = 1


class ISCSIConnector(initiator_connector.InitiatorConnector):
    """Connector class to attach/detach iSCSI volumes."""

    def __init__(self, root_helper=None, execute=None, sysfs_view=None,
                 *args, **kwargs):
        super(ISCSIConnector, self).__init__(root_helper, execute=execute,
                                             sysfs_view=sysfs_view,
                                             *args, **kwargs)
        self._linuxiscsi = linuxiscsi.LinuxISCSI(root_helper, execute=execute,
                                                 scsi=self._linuxscsi)
        self._linuxmultipath = linuxmultipath.LinuxMultipath(
            root_helper, execute=execute, sysfs_view=self.sysfs)

    def _login(self, info: pinfo.PublishInfo) -> None:
        """Log in to the target unless there is already a session to it."""
        if self._linuxiscsi.session_exists_to_target(info.target_iqn):
            LOG.debug('Session to %s already exists.', info.target_iqn)
            return

        if info.use_chap:
            for portal in info.all_portals:
                self._linuxiscsi.login_with_chap(
                    info.target_iqn, portal, info.auth_username,
                    info.auth_password, info.target_auth_username,
                    info.target_auth_password, info.iscsi_interface)
        else:
            self._linuxiscsi.ensure_sessions(info.portal_ips)

    @utils.trace
    def attach_volume(self, name, mountpoint, publish_info):
        """Attach an iSCSI LUN, formatting and mounting it as requested.

        The device path is stored in the publish info's device_path key so
        the device can be mounted later.  Attaching an already attached
        volume doesn't log in, scan or format again.

        :raises ISCSINotSupported: open-iscsi is not installed.
        :raises FilesystemMismatch: The device has another filesystem.
        """
        info = pinfo.PublishInfo.wrap(publish_info)
        lun = info.lun
        iqn = info.target_iqn
        LOG.debug('Attaching iSCSI volume %(name)s: LUN %(lun)s of '
                  '%(iqn)s at %(portals)s, fstype %(fstype)s.',
                  {'name': name, 'lun': lun, 'iqn': iqn,
                   'portals': info.all_portals, 'fstype': info.fstype})

        if not self._linuxiscsi.is_supported():
            LOG.error('Unable to attach volume: open-iscsi tools not found.')
            raise exception.ISCSINotSupported()

        self._login(info)

        should_scan = not self.sysfs.is_already_attached(lun, iqn)
        self._linuxscsi.wait_for_device_scan(lun, iqn, should_scan)
        self._wait_for_multipath_device_for_lun(lun, iqn)

        device_info = self.get_device_info_for_lun(
            lun, iqn, need_fs_type=not info.is_raw)
        LOG.debug('Found device %s.', device_info)

        device = device_info.device_to_use
        if not device:
            raise exception.VolumeDeviceNotFound(device=name)
        device_path = '/dev/' + device
        self._linuxscsi.wait_for_device(device_path)

        # Returned in the publish info in case the mount is done later
        info.device_path = device_path

        if info.is_raw:
            return device_path

        existing_fstype = device_info.filesystem
        if not existing_fstype:
            LOG.debug('Formatting LUN %(name)s with %(fstype)s.',
                      {'name': name, 'fstype': info.fstype})
            self._linuxfs.format_volume(device_path, info.fstype)
        elif existing_fstype != info.fstype:
            LOG.error('LUN %(name)s is already formatted with %(existing)s, '
                      'requested %(fstype)s.',
                      {'name': name, 'existing': existing_fstype,
                       'fstype': info.fstype})
            raise exception.FilesystemMismatch(name=name, device=device,
                                               existing=existing_fstype)
        else:
            LOG.debug('LUN %(name)s already formatted with %(fstype)s.',
                      {'name': name, 'fstype': existing_fstype})

        if mountpoint:
            self._linuxfs.mount_device(device_path, mountpoint,
                                       info.mount_options)
        return device_path

    def _wait_for_multipath_device_for_lun(self, lun: int, iqn: str) -> str:
        host_session_map = self.sysfs.get_host_session_map(iqn)
        if not host_session_map:
            raise exception.NoISCSIHostsFound(iqn=iqn)
        paths = self.sysfs.get_sysfs_block_dirs_for_lun(lun, host_session_map)
        devices = self.sysfs.get_devices_for_lun(paths)
        if not devices:
            raise exception.VolumePathsNotFound(lun=lun, iqn=iqn)
        return self._linuxmultipath.resolve_multipath_device(devices)

    def get_device_info_for_lun(self, lun: int, iqn: str,
                                need_fs_type: bool = False
                                ) -> sysfs.ScsiDeviceInfo:
        """Describe the devices currently present for a LUN.

        :raises NoISCSIHostsFound: There is no session to the target.
        :raises VolumePathsNotFound: The LUN has no block device yet.
        """
        host_session_map = self.sysfs.get_host_session_map(iqn)
        if not host_session_map:
            raise exception.NoISCSIHostsFound(iqn=iqn)

        paths = self.sysfs.get_sysfs_block_dirs_for_lun(lun, host_session_map)
        devices = self.sysfs.get_devices_for_lun(paths)
        if not devices:
            raise exception.VolumePathsNotFound(lun=lun, iqn=iqn)

        multipath_device = self.sysfs.find_multipath_device_for_devices(
            devices)

        fs_type = ''
        if need_fs_type:
            fs_type = self._linuxfs.get_fs_type(
                '/dev/' + (multipath_device or devices[0]))

        return sysfs.ScsiDeviceInfo(lun=lun, devices=devices,
                                    multipath_device=multipath_device,
                                    filesystem=fs_type, iqn=iqn,
                                    host_session_map=host_session_map)

    def get_device_info_for_mount_path(self, mountpoint: str
                                       ) -> sysfs.ScsiDeviceInfo:
        """Describe the device mounted on a path.

        Only the devices and multipath_device fields are filled in.
        """
        device = self._linuxfs.get_device_name_from_mount(mountpoint)
        if device.startswith(sysfs.MULTIPATH_PREFIX):
            device_info = sysfs.ScsiDeviceInfo(
                lun=None,
                devices=self.sysfs.find_devices_for_multipath_device(device),
                multipath_device=device)
        else:
            device_info = sysfs.ScsiDeviceInfo(lun=None, devices=[device])
        LOG.debug('Found device %(info)s mounted on %(mp)s',
                  {'info': device_info, 'mp': mountpoint})
        return device_info

    @utils.trace
    def prepare_device_for_removal(self, lun: int, iqn: str) -> None:
        """Remove the devices of a LUN from this host.

        A LUN that can't be found is skipped, there is nothing to remove.
        """
        try:
            device_info = self.get_device_info_for_lun(lun, iqn)
        except (exception.NotFound, OSError) as exc:
            LOG.warning('Could not get device info for LUN %(lun)s, skipping '
                        'host removal steps: %(exc)s',
                        {'lun': lun, 'exc': exc})
            return
        self.remove_scsi_device(device_info)

    @utils.trace
    def prepare_device_at_mount_path_for_removal(self, mountpoint: str,
                                                 unmount: bool = False
                                                 ) -> None:
        device_info = self.get_device_info_for_mount_path(mountpoint)
        if unmount:
            self._linuxfs.umount(mountpoint)
        self.remove_scsi_device(device_info)

    def remove_scsi_device(self, device_info: sysfs.ScsiDeviceInfo) -> None:
        """Flush the multipath map and delete every path of a device.

        All the paths are tried even if some fail, the failures are raised
        together at the end.
        """
        self._linuxscsi.list_all_devices()
        self._linuxmultipath.flush(device_info.multipath_device)
        try:
            self._linuxscsi.remove_devices(list(device_info.devices))
        finally:
            # Give the host a chance to fully process the removal
            time.sleep(SETTLE_TIME)
            self._linuxscsi.list_all_devices()

    @utils.trace
    def expand_filesystem(self, publish_info, staged_target_path: str) -> int:
        """Grow the filesystem of an attached volume to the device size.

        The device is mounted on a temporary directory below the staging
        path for the duration of the operation.

        :returns: The new size of the filesystem in bytes.
        """
        info = pinfo.PublishInfo.wrap(publish_info)
        if info.fstype not in initiator.SUPPORTED_FILESYSTEMS:
            raise exception.UnsupportedFilesystem(fstype=info.fstype)

        device_path = info.device_path
        tmp_mount_point = self._linuxfs.mount_filesystem_for_resize(
            device_path, staged_target_path, info.mount_options)
        try:
            # The resize tools refuse to work on the wrong filesystem type
            if info.fstype == initiator.FS_XFS:
                return self._linuxfs.expand_filesystem(
                    'xfs_growfs', tmp_mount_point, tmp_mount_point)
            return self._linuxfs.expand_filesystem(
                'resize2fs', device_path, tmp_mount_point)
        finally:
            try:
                self._linuxfs.remove_mount_point(tmp_mount_point)
            except Exception:
                LOG.exception('Failed to remove temporary mount point %s.',
                              tmp_mount_point)

    def _get_device_size(self, device: str) -> int:
        size = self._linuxscsi.get_device_size('/dev/' + device)
        if size is None:
            raise exception.CommandExecutionFailed(
                cmd='blockdev --getsize64 /dev/%s' % device)
        return size

    @utils.trace
    def rescan_devices(self, iqn: str, lun: int, min_size: int) -> None:
        """Make the kernel notice that a LUN has grown.

        :raises DeviceTooSmall: A device is still smaller than min_size.
        """
        device_info = self.get_device_info_for_lun(lun, iqn)

        all_large_enough = True
        for device in device_info.devices:
            if self._get_device_size(device) >= min_size:
                continue
            all_large_enough = False
            self._linuxscsi.rescan_disk(device)

        if not all_large_enough:
            time.sleep(SETTLE_TIME)
            for device in device_info.devices:
                size = self._get_device_size(device)
                if size < min_size:
                    LOG.error('Disk %s not large enough after resize.',
                              device)
                    raise exception.DeviceTooSmall(device=device, size=size,
                                                   min_size=min_size)

        multipath_device = device_info.multipath_device
        if not multipath_device:
            return
        size = self._get_device_size(multipath_device)
        if size >= min_size:
            LOG.debug('Not reloading multipath device %(dev)s, its size '
                      '%(size)s is at least %(min)s.',
                      {'dev': multipath_device, 'size': size,
                       'min': min_size})
            return

        LOG.debug('Reloading multipath device %s.', multipath_device)
        self._linuxmultipath.reload(multipath_device)
        time.sleep(SETTLE_TIME)
        size = self._get_device_size(multipath_device)
        if size < min_size:
            LOG.error('Multipath device %s not large enough after resize.',
                      multipath_device)
            raise exception.DeviceTooSmall(device=multipath_device,
                                           size=size, min_size=min_size)

    def safe_to_log_out(self, host: int, session: int) -> bool:
        return self.sysfs.safe_to_log_out(host, session)

    @utils.trace
    def disable_and_delete(self, iqn: str, portal: str) -> None:
        """Log out of a target portal and remove its node records."""
        self._linuxiscsi.logout_and_delete(iqn, portal)

    def get_iscsi_devices(self) -> List[sysfs.ScsiDeviceInfo]:
        return self.sysfs.get_iscsi_devices()

    def get_mounted_iscsi_devices(
            self, mount_point_filter: Optional[str] = None
    ) -> List[sysfs.ScsiDeviceInfo]:
        """iSCSI devices that are mounted on this host.

        :param mount_point_filter: Only look at mount points containing this
                                   string, for example '/pvc-'.
        """
        mounted_devices = self._linuxfs.get_mounted_devices(
            mount_point_filter)
        iscsi_devices = self.get_iscsi_devices()

        mounted = []
        for mounted_device in mounted_devices:
            for iscsi_device in iscsi_devices:
                if (mounted_device == iscsi_device.multipath_device or
                        mounted_device in iscsi_device.devices):
                    LOG.debug('Found mounted iSCSI device %s.', iscsi_device)
                    mounted.append(iscsi_device)
                    break
        return mounted

    def target_has_mounted_device(self, iqn: str,
                                  mount_point_filter: Optional[str] = None
                                  ) -> bool:
        if not iqn:
            raise exception.InvalidParameterValue(
                err=_('A target IQN is required.'))
        return any(device.iqn == iqn for device in
                   self.get_mounted_iscsi_devices(mount_point_filter))

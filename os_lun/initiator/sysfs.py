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

"""Read only view of the iSCSI and SCSI topology exposed by sysfs.

Nothing in here runs a subprocess.  Files and directories that don't exist
are reported as empty results, it is up to the callers to decide whether
that means "try again later" or a failure.

All paths are built below a root directory so a containerized process can
look at the host's sysfs (for example mounted on /host).
"""

import os
import re
from typing import Dict, List, Optional  # noqa: H301

from oslo_log import log as logging


LOG = logging.getLogger(__name__)

HOST_DIR_REGEX = re.compile(r'^host(\d+)$')
SESSION_DIR_REGEX = re.compile(r'^session(\d+)$')

# Naming conventions used by the kernel for device mapper and SCSI disks
MULTIPATH_PREFIX = 'dm-'
SCSI_DISK_PREFIX = 'sd'

ISCSI_HOST_DIR = '/sys/class/iscsi_host'
ISCSI_SESSION_DIR = '/sys/class/iscsi_session'
SYS_BLOCK_DIR = '/sys/block'
# Channel and target id are always 0 for iSCSI, see drivers/scsi/scsi_scan.c
LUN_BLOCK_DIR = ('/sys/class/scsi_host/host%(host)d/device/session%(session)d/'
                 'iscsi_session/session%(session)d/device/'
                 'target%(host)d:0:0/%(host)d:0:0:%(lun)d/block')
HOST_TARGET_DIR = ('/sys/class/iscsi_host/host%(host)d/device/'
                   'session%(session)d/target%(host)d:0:0')


class ScsiDeviceInfo(object):
    """What is known about one LUN present on this host.

    Instances are never modified, every discovery builds a new one.  When
    multipath_device is set all entries in devices are slaves of it.
    """

    def __init__(self, lun, devices, multipath_device='', filesystem='',
                 iqn='', host_session_map=None, host='', channel='',
                 target='') -> None:
        self.host = host
        self.channel = channel
        self.target = target
        self.lun = str(lun) if lun is not None else ''
        self.devices = tuple(devices)
        self.multipath_device = multipath_device or ''
        self.filesystem = filesystem or ''
        self.iqn = iqn
        self.host_session_map = dict(host_session_map or {})

    def __str__(self) -> str:
        return ('ScsiDeviceInfo(lun=%s, devices=%s, multipath_device=%s, '
                'filesystem=%s, iqn=%s)' %
                (self.lun, list(self.devices), self.multipath_device,
                 self.filesystem, self.iqn))

    __repr__ = __str__

    def __eq__(self, other) -> bool:
        if not isinstance(other, ScsiDeviceInfo):
            return NotImplemented
        return vars(self) == vars(other)

    @property
    def device_to_use(self) -> str:
        """Multipath device if there is one, else the first path."""
        if self.multipath_device:
            return self.multipath_device
        return self.devices[0] if self.devices else ''


class SysfsView(object):
    def __init__(self, root: Optional[str] = None) -> None:
        self.root = (root or '').rstrip('/')

    def path(self, path: str) -> str:
        """Translate a host absolute path into one below our root."""
        return self.root + path

    def exists(self, path: str) -> bool:
        return os.path.exists(self.path(path))

    def listdir(self, path: str) -> List[str]:
        """Sorted directory entries, empty if the directory is not there."""
        real_path = self.path(path)
        try:
            return sorted(os.listdir(real_path))
        except (FileNotFoundError, NotADirectoryError):
            return []
        except OSError as exc:
            LOG.warning('Could not read %(path)s: %(exc)s',
                        {'path': real_path, 'exc': exc})
            return []

    def read(self, path: str) -> Optional[str]:
        real_path = self.path(path)
        try:
            with open(real_path) as f:
                return f.read().strip()
        except OSError as exc:
            LOG.debug('Could not read %(path)s: %(exc)s',
                      {'path': real_path, 'exc': exc})
            return None

    def get_host_session_map(self, iqn: str) -> Dict[int, int]:
        """Map of SCSI host number to iSCSI session number for a target.

        Walks class/iscsi_host/host*/device/session*/iscsi_session/session*/
        and only keeps sessions whose targetname is exactly the iqn.
        """
        host_session_map = {}
        for host_name in self.listdir(ISCSI_HOST_DIR):
            match = HOST_DIR_REGEX.match(host_name)
            if not match:
                continue
            host = int(match.group(1))
            device_dir = '%s/%s/device' % (ISCSI_HOST_DIR, host_name)
            for session_name in self.listdir(device_dir):
                match = SESSION_DIR_REGEX.match(session_name)
                if not match:
                    continue
                target_name = self.read(
                    '%(dir)s/%(s)s/iscsi_session/%(s)s/targetname' %
                    {'dir': device_dir, 's': session_name})
                if target_name == iqn:
                    host_session_map[host] = int(match.group(1))

        LOG.debug('Host/session map for %(iqn)s: %(map)s',
                  {'iqn': iqn, 'map': host_session_map})
        return host_session_map

    def get_sysfs_block_dirs_for_lun(self, lun: int,
                                     host_session_map: Dict[int, int]
                                     ) -> List[str]:
        """Directories where the LUN block devices appear after a scan.

        One per host/session pair, ordered by host number.
        """
        return [self.path(LUN_BLOCK_DIR % {'host': host, 'session': session,
                                           'lun': int(lun)})
                for host, session in sorted(host_session_map.items())]

    @staticmethod
    def get_devices_for_lun(paths: List[str]) -> List[str]:
        """Block device name found in each of the given block dirs."""
        devices = []
        for path in paths:
            try:
                entries = sorted(os.listdir(path))
            except (FileNotFoundError, NotADirectoryError):
                continue
            if entries:
                devices.append(entries[0])
        return devices

    def is_already_attached(self, lun: int, iqn: str) -> bool:
        host_session_map = self.get_host_session_map(iqn)
        if not host_session_map:
            return False
        paths = self.get_sysfs_block_dirs_for_lun(lun, host_session_map)
        return bool(self.get_devices_for_lun(paths))

    def list_holders(self, device: str) -> List[str]:
        """Device mapper devices stacked on top of a disk, like ['dm-0']."""
        return [name for name in
                self.listdir('%s/%s/holders' % (SYS_BLOCK_DIR, device))
                if name.startswith(MULTIPATH_PREFIX)]

    def list_slaves(self, device: str) -> List[str]:
        """SCSI disks below a device mapper device, like ['sda', 'sdb']."""
        return [name for name in
                self.listdir('%s/%s/slaves' % (SYS_BLOCK_DIR, device))
                if name.startswith(SCSI_DISK_PREFIX)]

    def find_multipath_device_for_device(self, device: str) -> str:
        holders = self.list_holders(device)
        if holders:
            return holders[0]
        LOG.debug('Could not find multipath device for device %s.', device)
        return ''

    def find_multipath_device_for_devices(self, devices: List[str]) -> str:
        for device in devices:
            multipath_device = self.find_multipath_device_for_device(device)
            if multipath_device:
                return multipath_device
        return ''

    def find_devices_for_multipath_device(self, device: str) -> List[str]:
        devices = self.list_slaves(device)
        if devices:
            LOG.debug('Found devices %(devices)s for multipath device '
                      '%(device)s.', {'devices': devices, 'device': device})
        else:
            LOG.debug('Could not find devices for multipath device %s.',
                      device)
        return devices

    def safe_to_log_out(self, host: int, session: int) -> bool:
        """Check that no SCSI target remains on an iSCSI host and session.

        Any entry in the target directory is a device still in use, so
        logging out would yank it.  A missing directory means nothing is
        left.
        """
        path = HOST_TARGET_DIR % {'host': host, 'session': session}
        entries = self.listdir(path)
        if entries:
            LOG.debug('Devices %(devs)s still present on %(path)s.',
                      {'devs': entries, 'path': path})
            return False
        return True

    def get_iscsi_devices(self) -> List[ScsiDeviceInfo]:
        """All iSCSI LUNs attached to (not necessarily mounted on) the host.

        Walks class/iscsi_session/session*/device/target*/H:B:D:L/block.
        """
        devices = []
        host_session_maps: Dict[str, Dict[int, int]] = {}

        for session_name in self.listdir(ISCSI_SESSION_DIR):
            if not SESSION_DIR_REGEX.match(session_name):
                continue
            session_path = '%s/%s' % (ISCSI_SESSION_DIR, session_name)
            iqn = self.read(session_path + '/targetname')
            if not iqn:
                LOG.warning('Could not read targetname of %s.', session_path)
                continue

            session_device_path = session_path + '/device'
            target_dir = next((name for name in
                               self.listdir(session_device_path)
                               if name.startswith('target')), None)
            if not target_dir:
                LOG.warning('Could not find a host:bus:device directory at '
                            '%s', session_device_path)
                continue

            hbd = target_dir[len('target'):]
            target_path = '%s/%s' % (session_device_path, target_dir)
            for hbdl in self.listdir(target_path):
                if not hbdl.startswith(hbd):
                    continue
                values = hbdl.split(':')
                if len(values) != 4:
                    LOG.warning('Could not parse values from %s', hbdl)
                    continue
                host, channel, target, lun = values

                for block_device in self.listdir(
                        '%s/%s/block' % (target_path, hbdl)):
                    multipath_device = self.find_multipath_device_for_device(
                        block_device)
                    if multipath_device:
                        slaves = self.find_devices_for_multipath_device(
                            multipath_device)
                    else:
                        slaves = [block_device]

                    if iqn not in host_session_maps:
                        host_session_maps[iqn] = self.get_host_session_map(
                            iqn)

                    device = ScsiDeviceInfo(
                        lun=lun, devices=slaves,
                        multipath_device=multipath_device, iqn=iqn,
                        host_session_map=host_session_maps[iqn],
                        host=host, channel=channel, target=target)
                    LOG.debug('Found iSCSI device %s.', device)
                    devices.append(device)
        return devices

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

from typing import List, Optional, Type, Union  # noqa: H301

from os_lun import exception
from os_lun.i18n import _
from os_lun import initiator
from os_lun import utils


TARGET_PORTAL = 'target_portal'
TARGET_PORTALS = 'target_portals'
TARGET_IQN = 'target_iqn'
TARGET_LUN = 'target_lun'
USE_CHAP = 'use_chap'
AUTH_USERNAME = 'auth_username'
AUTH_PASSWORD = 'auth_password'
TARGET_AUTH_USERNAME = 'target_auth_username'
TARGET_AUTH_PASSWORD = 'target_auth_password'
ISCSI_INTERFACE = 'iscsi_interface'
FSTYPE = 'fstype'
MOUNT_OPTIONS = 'mount_options'
DEVICE_PATH = 'device_path'
NFS_SERVER_IP = 'nfs_server_ip'
NFS_PATH = 'nfs_path'


class PublishInfo(object):
    """Internal representation of the publish information of a volume.

    Callers describe a volume with a dictionary like:

      {
       'target_portal': '10.0.0.5:3260',
       'target_portals': ['10.0.1.5:3260'],     # secondary portals
       'target_iqn': 'iqn.1992-08.com.netapp:sn.123:vs.3',
       'target_lun': 0,
       'use_chap': True,
       'auth_username': <username>,
       'auth_password': <initiator secret>,
       'target_auth_username': <username for mutual CHAP>,
       'target_auth_password': <target secret for mutual CHAP>,
       'iscsi_interface': 'default',
       'fstype': 'ext4',                        # or 'raw'
       'mount_options': 'discard',
      }

    NFS volumes use 'nfs_server_ip', 'nfs_path' and 'mount_options'.

    The 'device_path' key is filled in by the attach operation so the device
    can be mounted, grown, or detached later.  Only 'target_portal',
    'target_iqn' and 'target_lun' are mandatory for iSCSI.
    """

    def __init__(self, publish_info: dict) -> None:
        self._source = publish_info
        self.target_portal: str = publish_info.get(TARGET_PORTAL) or ''
        self.target_portals: List[str] = list(
            publish_info.get(TARGET_PORTALS) or [])
        self.target_iqn: str = publish_info.get(TARGET_IQN) or ''
        self.target_lun = publish_info.get(TARGET_LUN)
        self.use_chap: bool = bool(publish_info.get(USE_CHAP, False))
        self.auth_username = publish_info.get(AUTH_USERNAME) or ''
        self.auth_password = publish_info.get(AUTH_PASSWORD) or ''
        self.target_auth_username = (
            publish_info.get(TARGET_AUTH_USERNAME) or '')
        self.target_auth_password = (
            publish_info.get(TARGET_AUTH_PASSWORD) or '')
        self.iscsi_interface: str = (publish_info.get(ISCSI_INTERFACE) or
                                     initiator.DEFAULT_ISCSI_INTERFACE)
        self.fstype: str = publish_info.get(FSTYPE) or ''
        self.mount_options: str = publish_info.get(MOUNT_OPTIONS) or ''
        self.nfs_server_ip: str = publish_info.get(NFS_SERVER_IP) or ''
        self.nfs_path: str = publish_info.get(NFS_PATH) or ''

    def __str__(self) -> str:
        return ('PublishInfo(iqn=%s, lun=%s, portals=%s, fstype=%s)' %
                (self.target_iqn, self.target_lun, self.all_portals,
                 self.fstype))

    __repr__ = __str__

    @property
    def device_path(self) -> Optional[str]:
        return self._source.get(DEVICE_PATH)

    @device_path.setter
    def device_path(self, value: str) -> None:
        # Written through so the caller sees it on its own dictionary
        self._source[DEVICE_PATH] = value

    @property
    def lun(self) -> int:
        try:
            return int(self.target_lun)
        except (TypeError, ValueError):
            raise exception.InvalidParameterValue(
                err=_('Invalid LUN number: %s') % self.target_lun)

    @property
    def all_portals(self) -> List[str]:
        """Primary portal followed by the secondary ones."""
        return [self.target_portal] + self.target_portals

    @property
    def portal_ips(self) -> List[str]:
        return [utils.parse_portal_ip(p) for p in self.all_portals]

    @property
    def is_raw(self) -> bool:
        return self.fstype == initiator.FS_RAW

    @property
    def nfs_export(self) -> str:
        return '%s:%s' % (self.nfs_server_ip, self.nfs_path)

    @classmethod
    def wrap(cls: Type['PublishInfo'],
             publish_info: Union[dict, 'PublishInfo']) -> 'PublishInfo':
        """Return publish_info as a PublishInfo, converting dictionaries."""
        if isinstance(publish_info, cls):
            return publish_info
        return cls(publish_info)

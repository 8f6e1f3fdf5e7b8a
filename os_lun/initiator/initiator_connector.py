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


import abc

from oslo_config import cfg

from os_lun import executor
from os_lun.initiator import linuxfs
from os_lun.initiator import linuxscsi
from os_lun.initiator import sysfs

CONF = cfg.CONF


class InitiatorConnector(executor.Executor, metaclass=abc.ABCMeta):

    def __init__(self, root_helper=None, execute=None, sysfs_view=None,
                 *args, **kwargs):
        super(InitiatorConnector, self).__init__(root_helper, execute=execute,
                                                 *args, **kwargs)
        self.sysfs = sysfs_view or sysfs.SysfsView(
            CONF.os_lun.chroot_path_prefix)
        self._linuxscsi = linuxscsi.LinuxSCSI(root_helper, execute=execute,
                                              sysfs_view=self.sysfs)
        self._linuxfs = linuxfs.LinuxFilesystem(root_helper, execute=execute,
                                                scsi=self._linuxscsi)

    def set_execute(self, execute):
        super(InitiatorConnector, self).set_execute(execute)
        for helper in list(vars(self).values()):
            if isinstance(helper, executor.Executor):
                helper.set_execute(execute)

    @abc.abstractmethod
    def attach_volume(self, name, mountpoint, publish_info):
        """Attach a volume to this host.

        This method must be able to do its job using only the data passed
        in, it always runs on the host the volume is attached to.

        An example publish_info for iSCSI:

        {'target_portal': '10.0.0.5:3260',
         'target_portals': ['10.0.1.5:3260'],
         'target_iqn': 'iqn.1992-08.com.netapp:sn.123:vs.3',
         'target_lun': 0,
         'use_chap': False,
         'fstype': 'ext4',
         'mount_options': 'discard',
        }

        And for NFS:

        {'nfs_server_ip': '10.0.0.5',
         'nfs_path': '/export/vol1',
         'mount_options': 'nfsvers=4',
        }

        :param name: Name of the volume, only used in logs and errors.
        :type name: str
        :param mountpoint: Where to mount the volume, or an empty string to
                           leave the mount for later.
        :type mountpoint: str
        :param publish_info: The dictionary that describes the volume.  Some
                             connectors set its device_path key.
        :type publish_info: dict
        :returns: The path of the attached device or export.
        """
        pass

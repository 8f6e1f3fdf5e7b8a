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

from oslo_concurrency import processutils as putils

from os_lun.initiator.connectors import nfs
from os_lun.tests.initiator import test_connector


class NFSConnectorTestCase(test_connector.ConnectorTestCase):
    PUBLISH_INFO = {
        'nfs_server_ip': '10.0.0.5',
        'nfs_path': '/export/vol1',
        'mount_options': 'nfsvers=4',
    }

    def setUp(self):
        super(NFSConnectorTestCase, self).setUp()
        self.connector = nfs.NFSConnector(None, execute=self.fake_execute,
                                          sysfs_view=self.sysfs)

    def test_attach_volume(self):
        result = self.connector.attach_volume('vol1', '/mnt/vol1',
                                              dict(self.PUBLISH_INFO))

        self.assertEqual('10.0.0.5:/export/vol1', result)
        self.assertEqual(
            ['mkdir -p /mnt/vol1',
             'mount -t nfs -o nfsvers=4 10.0.0.5:/export/vol1 /mnt/vol1'],
            self.cmds)

    def test_attach_volume_no_options(self):
        publish_info = dict(self.PUBLISH_INFO, mount_options='')

        self.connector.attach_volume('vol1', '/mnt/vol1', publish_info)

        self.assertEqual('mount -t nfs 10.0.0.5:/export/vol1 /mnt/vol1',
                         self.cmds[-1])

    def test_attach_volume_mount_failure(self):
        def fake_execute(*cmd, **kwargs):
            if cmd[0] == 'mount':
                raise putils.ProcessExecutionError(exit_code=32)
            return '', ''

        self.connector.set_execute(fake_execute)

        self.assertRaises(putils.ProcessExecutionError,
                          self.connector.attach_volume, 'vol1', '/mnt/vol1',
                          dict(self.PUBLISH_INFO))

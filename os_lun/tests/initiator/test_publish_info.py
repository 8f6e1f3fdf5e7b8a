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

import ddt

from os_lun import exception
from os_lun.initiator import publish_info
from os_lun.tests import base


@ddt.ddt
class PublishInfoTestCase(base.TestCase):

    def test_defaults(self):
        info = publish_info.PublishInfo({'target_portal': '10.0.0.5:3260',
                                         'target_iqn': 'iqn.x',
                                         'target_lun': '3'})

        self.assertEqual(3, info.lun)
        self.assertEqual(['10.0.0.5:3260'], info.all_portals)
        self.assertEqual(['10.0.0.5'], info.portal_ips)
        self.assertFalse(info.use_chap)
        self.assertEqual('default', info.iscsi_interface)
        self.assertEqual('', info.fstype)
        self.assertFalse(info.is_raw)
        self.assertIsNone(info.device_path)

    def test_portals(self):
        info = publish_info.PublishInfo(
            {'target_portal': '10.0.0.5:3260',
             'target_portals': ['[fd20::2]:3260', '10.0.1.5']})

        self.assertEqual(['10.0.0.5:3260', '[fd20::2]:3260', '10.0.1.5'],
                         info.all_portals)
        self.assertEqual(['10.0.0.5', '[fd20::2]', '10.0.1.5'],
                         info.portal_ips)

    @ddt.data(None, 'one', [1])
    def test_invalid_lun(self, lun):
        info = publish_info.PublishInfo({'target_lun': lun})
        self.assertRaises(exception.InvalidParameterValue, getattr, info,
                          'lun')

    def test_device_path_written_through(self):
        source = {'fstype': 'raw'}
        info = publish_info.PublishInfo.wrap(source)

        info.device_path = '/dev/dm-0'

        self.assertEqual('/dev/dm-0', source['device_path'])
        self.assertTrue(info.is_raw)
        self.assertIs(info, publish_info.PublishInfo.wrap(info))

    def test_nfs_export(self):
        info = publish_info.PublishInfo({'nfs_server_ip': '10.0.0.5',
                                         'nfs_path': '/export/vol1'})
        self.assertEqual('10.0.0.5:/export/vol1', info.nfs_export)

    def test_str_hides_secrets(self):
        info = publish_info.PublishInfo({'target_iqn': 'iqn.x',
                                         'use_chap': True,
                                         'auth_password': 'secret'})
        self.assertNotIn('secret', str(info))

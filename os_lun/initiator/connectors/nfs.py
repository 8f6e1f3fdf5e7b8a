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

from oslo_log import log as logging

from os_lun.initiator import initiator_connector
from os_lun.initiator import publish_info as pinfo
from os_lun import utils

LOG = logging.getLogger(__name__)


class NFSConnector(initiator_connector.InitiatorConnector):
    """Connector class to attach NFS exports."""

    @utils.trace
    def attach_volume(self, name, mountpoint, publish_info):
        info = pinfo.PublishInfo.wrap(publish_info)
        export = info.nfs_export
        LOG.debug('Publishing NFS volume %(name)s from %(export)s on '
                  '%(mp)s with options "%(opts)s".',
                  {'name': name, 'export': export, 'mp': mountpoint,
                   'opts': info.mount_options})
        self._linuxfs.mount_nfs(export, mountpoint, info.mount_options)
        return export

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

"""Connector objects for each supported transport protocol.

.. module: connector

The connectors here are responsible for attaching volumes to this host and
for discovering and removing their devices.
"""

from oslo_log import log as logging
from oslo_utils import importutils

from os_lun import exception
from os_lun.i18n import _
from os_lun import initiator

LOG = logging.getLogger(__name__)

_connector_mapping = {
    initiator.ISCSI:
        'os_lun.initiator.connectors.iscsi.ISCSIConnector',
    initiator.NFS:
        'os_lun.initiator.connectors.nfs.NFSConnector',
}


def get_connector_mapping():
    """Protocol name to connector class path."""
    return _connector_mapping


class InitiatorConnector(object):

    @staticmethod
    def factory(protocol, root_helper=None, *args, **kwargs):
        """Build a Connector object based upon protocol."""
        _mapping = get_connector_mapping()

        LOG.debug("Factory for %(protocol)s", {'protocol': protocol})
        protocol = protocol.upper()

        kwargs.update({'root_helper': root_helper})

        connector = _mapping.get(protocol)
        if not connector:
            msg = (_("Invalid InitiatorConnector protocol "
                     "specified %(protocol)s") %
                   dict(protocol=protocol))
            raise exception.InvalidConnectorProtocol(msg)

        conn_cls = importutils.import_class(connector)
        return conn_cls(*args, **kwargs)

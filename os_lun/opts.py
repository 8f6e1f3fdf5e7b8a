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
import os

from oslo_config import cfg


DOCKER_PLUGIN_MODE_ENV = 'DOCKER_PLUGIN_MODE'
DOCKER_PLUGIN_CHROOT_PREFIX = '/host'

_opts = [
    cfg.StrOpt('chroot_path_prefix',
               default='',  # Set by set_defaults method below on setup
               help='Root under which the host sysfs tree is visible. Needed '
                    'when running inside a container that must observe and '
                    'modify the host device tree. Defaults to "/host" when '
                    'the DOCKER_PLUGIN_MODE environment variable is set and '
                    'to an empty string otherwise.'),
    cfg.PortOpt('iscsi_port',
                default=3260,
                help='TCP port appended to portal addresses on iSCSI node '
                     'operations.'),
    cfg.IntOpt('replacement_timeout',
               default=5,
               min=0,
               help='Value used for node.session.timeo.replacement_timeout '
                    'on every discovered iSCSI node before logging in.'),
    cfg.IntOpt('device_discovery_timeout',
               default=90,
               min=1,
               help='Seconds to wait for the block devices of a LUN to '
                    'appear after a SCSI bus scan.'),
    cfg.IntOpt('all_paths_discovery_timeout',
               default=5,
               min=0,
               help='Part of ``device_discovery_timeout`` spent waiting for '
                    'every path of a LUN to appear before settling for any '
                    'single path.'),
    cfg.IntOpt('multipath_discovery_timeout',
               default=90,
               min=1,
               help='Seconds to wait for a multipath device to be assembled '
                    'on top of the paths of a LUN, and for device nodes to '
                    'show up under /dev.'),
    cfg.IntOpt('resource_deletion_timeout',
               default=40,
               min=1,
               help='Seconds to keep trying to delete a file or directory.'),
    cfg.IntOpt('format_timeout',
               default=30,
               min=1,
               help='Seconds to keep retrying a failed filesystem format.'),
    cfg.IntOpt('command_timeout',
               default=5,
               min=1,
               help='Timeout for quick block device probes such as blkid, '
                    'dd and blockdev.'),
    cfg.IntOpt('multipath_command_timeout',
               default=30,
               min=1,
               help='Timeout for multipath flush and reload commands.'),
    cfg.IntOpt('umount_timeout',
               default=10,
               min=1,
               help='Timeout for umount before retrying with a forced '
                    'unmount.'),
]

cfg.CONF.register_opts(_opts, group='os_lun')


def list_opts():
    """oslo.config.opts entrypoint for sample config generation."""
    return [('os_lun', _opts)]


def set_defaults(conf=cfg.CONF):
    """Set default values that depend on the environment.

    Called from both os_lun setup and from the oslo.config.opts entrypoint
    for sample config generation.
    """
    if os.environ.get(DOCKER_PLUGIN_MODE_ENV):
        conf.set_default('chroot_path_prefix', DOCKER_PLUGIN_CHROOT_PREFIX,
                         'os_lun')

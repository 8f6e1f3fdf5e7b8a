# Copyright 2015 OpenStack Foundation
# All Rights Reserved.
#
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
"""os-lun's Initiator module.

The initator module contains the capabilities for attaching iSCSI and NFS
volumes to this host, and for discovering and removing the block devices
that back them.
"""

ISCSI = "ISCSI"
NFS = "NFS"

# iscsiadm exit status meaning "no records/sessions found"
ISCSI_ERR_NO_OBJS_FOUND = 21
# blkid exit status when no filesystem type could be identified
BLKID_ERR_NOT_FOUND = 2

DEFAULT_ISCSI_INTERFACE = 'default'

FS_RAW = 'raw'
FS_XFS = 'xfs'
FS_EXT3 = 'ext3'
FS_EXT4 = 'ext4'
SUPPORTED_FILESYSTEMS = (FS_XFS, FS_EXT3, FS_EXT4)

# Created below a staging path to mount a filesystem while growing it
TEMPORARY_MOUNT_DIR = 'tmp_mnt'

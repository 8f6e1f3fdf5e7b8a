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

"""open-iscsi session management through iscsiadm."""

import collections
from typing import List  # noqa: H301

from oslo_concurrency import processutils as putils
from oslo_config import cfg
from oslo_log import log as logging
from oslo_utils import strutils

from os_lun import exception
from os_lun import executor
from os_lun import initiator
from os_lun.initiator import linuxscsi
from os_lun import utils

LOG = logging.getLogger(__name__)
CONF = cfg.CONF

INITIATOR_NAME_FILE = '/etc/iscsi/initiatorname.iscsi'

DiscoveryInfo = collections.namedtuple(
    'DiscoveryInfo', ['portal', 'portal_ip', 'target_name'])

SessionInfo = collections.namedtuple(
    'SessionInfo', ['sid', 'portal', 'portal_ip', 'target_name'])


class LinuxISCSI(executor.Executor):
    def __init__(self, root_helper=None, execute=None, scsi=None,
                 *args, **kwargs):
        super(LinuxISCSI, self).__init__(root_helper, execute=execute,
                                         *args, **kwargs)
        self._scsi = scsi or linuxscsi.LinuxSCSI(root_helper, execute=execute)

    def _run_iscsiadm_bare(self, iscsi_command, **kwargs):
        check_exit_code = kwargs.pop('check_exit_code', 0)
        (out, err) = self._execute('iscsiadm',
                                   *iscsi_command,
                                   run_as_root=True,
                                   root_helper=self._root_helper,
                                   check_exit_code=check_exit_code,
                                   **kwargs)
        msg = ("iscsiadm %(iscsi_command)s: stdout=%(out)s stderr=%(err)s" %
               {'iscsi_command': iscsi_command, 'out': out, 'err': err})
        # don't let passwords be shown in log output
        LOG.debug(strutils.mask_password(msg))
        return (out, err)

    def _run_iscsiadm(self, iqn, portal, iscsi_command, **kwargs):
        return self._run_iscsiadm_bare(
            ('-m', 'node', '-T', iqn, '-p', self._portal_with_port(portal)) +
            tuple(iscsi_command), **kwargs)

    @staticmethod
    def _portal_with_port(portal: str) -> str:
        """Add the configured iSCSI port to a portal that lacks one."""
        if utils.is_ipv6(portal):
            has_port = ']:' in portal
        else:
            has_port = ':' in portal
        if has_port:
            return portal
        return '%s:%d' % (portal, CONF.os_lun.iscsi_port)

    def is_supported(self) -> bool:
        try:
            self._run_iscsiadm_bare(('-V',))
        except putils.ProcessExecutionError:
            LOG.debug('iscsiadm tools not found on this host.')
            return False
        return True

    def get_sessions(self) -> List[SessionInfo]:
        """Parse the active sessions reported by iscsiadm.

        Uses iscsiadm -m session and from a command output like
            tcp: [3] 10.0.207.7:3260,1028 iqn.2010-10.org.openstack:vol (hdd)

        returns [SessionInfo('3', '10.0.207.7:3260,1028', '10.0.207.7',
                             'iqn.2010-10.org.openstack:vol')]
        """
        try:
            out, _err = self._run_iscsiadm_bare(
                ('-m', 'session'),
                check_exit_code=[0, initiator.ISCSI_ERR_NO_OBJS_FOUND])
        except putils.ProcessExecutionError as exc:
            LOG.error('Problem checking iSCSI sessions: %s', exc)
            raise

        sessions = []
        for line in (out or '').strip().splitlines():
            fields = line.split()
            if len(fields) <= 3:
                continue
            sid = fields[1][1:-1]
            session = SessionInfo(sid=sid, portal=fields[2],
                                  portal_ip=utils.parse_portal_ip(fields[2]),
                                  target_name=fields[3])
            LOG.debug('Adding iSCSI session info %s', session)
            sessions.append(session)
        if not sessions:
            LOG.debug('No iSCSI session found.')
        return sessions

    def discover(self, portal: str) -> List[DiscoveryInfo]:
        """Run a SendTargets discovery against a portal.

        Each output line looks like
            10.63.152.249:3260,1 iqn.1992-08.com.netapp:2752.600a09800060
        or for IPv6
            [fd20:8b1e:b258:2000::2]:3260,1038 iqn.1992-08.com.netapp:sn.78
        """
        out, _err = self._run_iscsiadm_bare(
            ('-m', 'discovery', '-t', 'sendtargets', '-p', portal))

        targets = []
        for line in (out or '').splitlines():
            fields = line.split()
            if len(fields) < 2:
                continue
            target = DiscoveryInfo(portal=fields[0],
                                   portal_ip=utils.parse_portal_ip(fields[0]),
                                   target_name=fields[1])
            LOG.debug('Adding iSCSI discovery info %s', target)
            targets.append(target)
        return targets

    def session_exists(self, portal_ip: str) -> bool:
        return any(portal_ip in session.portal_ip
                   for session in self.get_sessions())

    def session_exists_to_target(self, iqn: str) -> bool:
        return any(session.target_name == iqn
                   for session in self.get_sessions())

    def configure_target(self, iqn: str, portal: str, name: str,
                         value: str) -> None:
        try:
            self._run_iscsiadm(iqn, portal,
                               ('--op', 'update', '-n', name, '-v', value))
        except putils.ProcessExecutionError as exc:
            LOG.warning('Error configuring %(name)s on iSCSI target %(iqn)s: '
                        '%(exc)s', {'name': name, 'iqn': iqn, 'exc': exc})
            raise

    def login(self, iqn: str, portal: str) -> None:
        self._scsi.list_all_devices()
        try:
            self._run_iscsiadm(iqn, portal, ('--login',))
        except putils.ProcessExecutionError as exc:
            LOG.error('Error logging in to iSCSI target %(iqn)s at portal '
                      '%(portal)s: %(exc)s',
                      {'iqn': iqn, 'portal': portal, 'exc': exc})
            raise
        self._scsi.list_all_devices()

    def login_with_chap(self, iqn: str, portal: str, username: str,
                        password: str, target_username: str = '',
                        target_password: str = '',
                        iface: str = initiator.DEFAULT_ISCSI_INTERFACE
                        ) -> None:
        """Create a node record with CHAP credentials and log in with it.

        Mutual CHAP is only configured when both target_username and
        target_password are given.
        """
        settings = [('node.session.auth.authmethod', 'CHAP'),
                    ('node.session.auth.username', username),
                    ('node.session.auth.password', password)]
        if target_username and target_password:
            settings += [('node.session.auth.username_in', target_username),
                         ('node.session.auth.password_in', target_password)]

        self._scsi.list_all_devices()
        step = 'node create'
        try:
            self._run_iscsiadm(iqn, portal,
                               ('--interface', iface, '--op', 'new'))
            for name, value in settings:
                step = 'set ' + name
                self._run_iscsiadm(iqn, portal,
                                   ('--op', 'update', '-n', name,
                                    '-v', value))
            step = 'login'
            self._run_iscsiadm(iqn, portal, ('--login',))
        except putils.ProcessExecutionError as exc:
            LOG.error('Error running iscsiadm %s.', step)
            raise exception.FailedISCSITargetPortalLogin(
                iqn=iqn, portal=portal,
                reason='%s failed: %s' % (step, exc.stderr or exc)) from exc
        self._scsi.list_all_devices()

    def ensure_session(self, portal_ip: str) -> None:
        """Make sure there is a session to a portal, logging in if needed.

        Logs into every discovered portal of the target that the requested
        portal belongs to, so all the paths are available for multipath.
        """
        if not self.is_supported():
            raise exception.ISCSINotSupported()

        if self.session_exists(portal_ip):
            LOG.debug('Found session to iSCSI portal %s.', portal_ip)
            return

        # Discovery in case we haven't seen this target from this host
        targets = self.discover(portal_ip)
        LOG.debug('Found iSCSI targets %s', targets)
        target = next((t for t in targets if portal_ip in t.portal_ip), None)
        if target is None:
            raise exception.TargetPortalNotFound(target_portal=portal_ip)

        for discovered in targets:
            if discovered.target_name != target.target_name:
                continue
            try:
                self.configure_target(discovered.target_name,
                                      discovered.portal_ip,
                                      'node.session.scan', 'manual')
            except putils.ProcessExecutionError:
                # Older versions of open-iscsi don't support manual scans
                LOG.debug('Could not set manual scan on %s, ignoring.',
                          discovered.portal_ip)
            try:
                self.configure_target(
                    discovered.target_name, discovered.portal_ip,
                    'node.session.timeo.replacement_timeout',
                    str(CONF.os_lun.replacement_timeout))
                self.login(discovered.target_name, discovered.portal_ip)
            except putils.ProcessExecutionError as exc:
                raise exception.FailedISCSITargetPortalLogin(
                    iqn=discovered.target_name,
                    portal=discovered.portal_ip,
                    reason=exc.stderr or exc) from exc

        if not self.session_exists(portal_ip):
            raise exception.ISCSISessionNotFound(portal=portal_ip)
        LOG.debug('Found session to iSCSI portal %s.', portal_ip)

    def ensure_sessions(self, portal_ips: List[str]) -> None:
        for portal_ip in portal_ips:
            self.ensure_session(portal_ip)

    def logout_and_delete(self, iqn: str, portal: str) -> None:
        """Log out of a target portal and forget its node records."""
        self._scsi.list_all_devices()
        try:
            self._run_iscsiadm_bare(('-m', 'node', '-T', iqn,
                                     '--portal', portal, '-u'))
        except putils.ProcessExecutionError as exc:
            LOG.debug('Error during iSCSI logout: %s', exc)

        try:
            self._run_iscsiadm_bare(('-m', 'node', '-o', 'delete',
                                     '-T', iqn))
        finally:
            self._scsi.list_all_devices()

    def get_initiator_iqns(self) -> List[str]:
        """Names this host uses as iSCSI initiator."""
        out, _err = self._execute('cat', INITIATOR_NAME_FILE,
                                  run_as_root=True,
                                  root_helper=self._root_helper)
        iqns = []
        for line in (out or '').splitlines():
            if line.startswith('InitiatorName='):
                iqns.append(line.split('=', 1)[1].strip())
        return iqns

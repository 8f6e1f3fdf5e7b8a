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

import signal
from unittest import mock

from oslo_concurrency import processutils as putils

from os_lun import exception
from os_lun import privileged
from os_lun.privileged import rootwrap as priv_rootwrap
from os_lun.tests import base


class PrivRootwrapTestCase(base.TestCase):
    def setUp(self):
        super(PrivRootwrapTestCase, self).setUp()

        # Bypass privsep and run these simple functions in-process
        # (allows reading back the modified state of mocks)
        privileged.default.set_client_mode(False)
        self.addCleanup(privileged.default.set_client_mode, True)

    @mock.patch('os_lun.privileged.rootwrap.execute_root')
    @mock.patch('oslo_concurrency.processutils.execute',
                return_value=('', ''))
    def test_execute(self, mock_putils_exec, mock_exec_root):
        priv_rootwrap.execute('echo', 'foo', run_as_root=False)
        self.assertFalse(mock_exec_root.called)

        priv_rootwrap.execute('echo', 'foo', run_as_root=True,
                              root_helper='baz', check_exit_code=0)
        mock_exec_root.assert_called_once_with(
            'echo', 'foo', check_exit_code=0)

    @mock.patch('oslo_concurrency.processutils.execute',
                return_value=('', ''))
    def test_execute_root(self, mock_putils_exec):
        priv_rootwrap.execute_root('echo', 'foo', check_exit_code=0)
        mock_putils_exec.assert_called_once_with(
            'echo', 'foo', check_exit_code=0, shell=False, run_as_root=False,
            on_completion=mock.ANY, on_execute=mock.ANY)

        # Exact exception isn't particularly important, but these
        # should be errors:
        self.assertRaises(TypeError,
                          priv_rootwrap.execute_root, 'foo', shell=True)
        self.assertRaises(TypeError,
                          priv_rootwrap.execute_root, 'foo', run_as_root=True)

    @mock.patch('oslo_concurrency.processutils.execute',
                side_effect=OSError(42, 'mock error'))
    def test_oserror_raise(self, mock_putils_exec):
        exc = self.assertRaises(putils.ProcessExecutionError,
                                priv_rootwrap.execute, 'foo')
        self.assertIn('mock error', exc.description)

    @mock.patch('threading.Timer')
    @mock.patch('oslo_concurrency.processutils.execute',
                return_value=('', ''))
    def test_custom_execute_no_timeout_no_timer(self, mock_exec, mock_timer):
        priv_rootwrap.custom_execute('echo', 'hola')
        kwargs = mock_exec.call_args[1]
        kwargs['on_execute'](mock.Mock())
        kwargs['on_completion'](mock.Mock())
        mock_timer.assert_not_called()

    def test_custom_execute_callbacks(self):
        """Confirm execute callbacks are called on execute."""
        on_execute = mock.Mock()
        on_completion = mock.Mock()
        msg = 'hola'
        out, err = priv_rootwrap.custom_execute('echo', msg,
                                                on_execute=on_execute,
                                                on_completion=on_completion)
        self.assertEqual(msg + '\n', out)
        self.assertEqual('', err)
        on_execute.assert_called_once_with(mock.ANY)
        proc = on_execute.call_args[0][0]
        on_completion.assert_called_once_with(proc)

    def _fire_timer_execute(self, mock_timer, proc, error=None):
        def fake_execute(*cmd, **kwargs):
            kwargs['on_execute'](proc)
            timeout, func, args = mock_timer.call_args[0]
            func(*args)
            kwargs['on_completion'](proc)
            if error:
                raise error
            return '', ''
        return fake_execute

    @mock.patch('threading.Timer')
    @mock.patch('oslo_concurrency.processutils.execute')
    def test_custom_execute_timeout_raises(self, mock_exec, mock_timer):
        proc = mock.Mock(pid=1234)
        mock_exec.side_effect = self._fire_timer_execute(
            mock_timer, proc, putils.ProcessExecutionError(exit_code=-9))

        exc = self.assertRaises(exception.ExecutionTimeout,
                                priv_rootwrap.custom_execute,
                                'sleep', '20', timeout=5)

        mock_timer.assert_called_once_with(5, mock.ANY, (proc,))
        mock_timer.return_value.start.assert_called_once_with()
        mock_timer.return_value.cancel.assert_called_once_with()
        proc.send_signal.assert_called_once_with(signal.SIGKILL)
        self.assertEqual(-9, exc.exit_code)
        self.assertIn('1234', exc.stderr)
        # A single process, never retried
        mock_exec.assert_called_once()

    @mock.patch('threading.Timer')
    @mock.patch('oslo_concurrency.processutils.execute')
    def test_custom_execute_timeout_without_error(self, mock_exec,
                                                  mock_timer):
        proc = mock.Mock(pid=1234)
        mock_exec.side_effect = self._fire_timer_execute(mock_timer, proc)

        self.assertRaises(exception.ExecutionTimeout,
                          priv_rootwrap.custom_execute,
                          'sleep', '20', timeout=5, signal=signal.SIGTERM,
                          check_exit_code=False)
        proc.send_signal.assert_called_once_with(signal.SIGTERM)

    def test_custom_execute_check_exit_code(self):
        self.assertRaises(putils.ProcessExecutionError,
                          priv_rootwrap.custom_execute,
                          'ls', '-y', check_exit_code=True)

    def test_custom_execute_no_check_exit_code(self):
        priv_rootwrap.custom_execute('ls', '-y', check_exit_code=False)

    @mock.patch.object(priv_rootwrap, 'LOG')
    @mock.patch('oslo_concurrency.processutils.execute',
                return_value=('\x1b[1mcolored\x1b[0m\n', ''))
    def test_custom_execute_logs_sanitized_output(self, mock_exec, mock_log):
        out, err = priv_rootwrap.custom_execute('multipath', '-ll')

        self.assertEqual('\x1b[1mcolored\x1b[0m\n', out)
        mock_log.debug.assert_called_once_with(
            '%(cmd)s output: %(out)s',
            {'cmd': 'multipath -ll', 'out': 'colored'})

    @mock.patch.object(priv_rootwrap, 'LOG')
    @mock.patch('oslo_concurrency.processutils.execute',
                return_value=(b'\x00\x00', b''))
    def test_custom_execute_log_output_disabled(self, mock_exec, mock_log):
        out, err = priv_rootwrap.custom_execute('dd', 'if=/dev/sda',
                                                log_output=False)

        self.assertEqual(b'\x00\x00', out)
        mock_log.debug.assert_not_called()
        self.assertNotIn('log_output', mock_exec.call_args[1])

# encoding=utf8
#    (c) Copyright 2015 Hewlett-Packard Development Company, L.P.
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

from unittest import mock

from oslo_concurrency import processutils as putils

from os_lun import executor as lun_executor
from os_lun.privileged import rootwrap
from os_lun.tests import base


class TestExecutor(base.TestCase):
    def test_default_execute(self):
        executor = lun_executor.Executor(root_helper=None)
        self.assertEqual(rootwrap.execute, executor._Executor__execute)

    def test_none_execute(self):
        executor = lun_executor.Executor(root_helper=None, execute=None)
        self.assertEqual(rootwrap.execute, executor._Executor__execute)

    def test_fake_execute(self):
        mock_execute = mock.Mock()
        executor = lun_executor.Executor(root_helper=None,
                                         execute=mock_execute)
        self.assertEqual(mock_execute, executor._Executor__execute)

    @mock.patch('sys.stdin', encoding='UTF-8')
    @mock.patch('os_lun.executor.priv_rootwrap.execute')
    def test_execute_non_safe_str_exception(self, execute_mock, stdin_mock):
        execute_mock.side_effect = putils.ProcessExecutionError(
            stdout='España', stderr='Zürich')

        executor = lun_executor.Executor(root_helper=None)
        exc = self.assertRaises(putils.ProcessExecutionError,
                                executor._execute)
        self.assertEqual('Espa\xf1a', exc.stdout)
        self.assertEqual('Z\xfcrich', exc.stderr)

    @mock.patch('sys.stdin', encoding='UTF-8')
    @mock.patch('os_lun.executor.priv_rootwrap.execute')
    def test_execute_non_safe_bytes(self, execute_mock, stdin_mock):
        execute_mock.return_value = (bytes('España', 'utf-8'),
                                     bytes('Zürich', 'utf-8'))

        executor = lun_executor.Executor(root_helper=None)
        stdout, stderr = executor._execute()
        self.assertEqual('Espa\xf1a', stdout)
        self.assertEqual('Z\xfcrich', stderr)

    @mock.patch('os_lun.executor.priv_rootwrap.execute')
    def test_execute_binary_output_untouched(self, execute_mock):
        execute_mock.return_value = (b'\x00\xffdata', b'')

        executor = lun_executor.Executor(root_helper=None)
        stdout, stderr = executor._execute('dd', binary=True)
        self.assertEqual(b'\x00\xffdata', stdout)
        self.assertEqual(b'', stderr)

    def test_execute_as_root_defaults(self):
        mock_execute = mock.Mock(return_value=('', ''))
        executor = lun_executor.Executor(root_helper='sudo',
                                         execute=mock_execute)

        executor._execute_as_root('ls', check_exit_code=0)

        mock_execute.assert_called_once_with('ls', check_exit_code=0,
                                             run_as_root=True,
                                             root_helper='sudo')

    def test_execute_as_root_keeps_explicit_values(self):
        mock_execute = mock.Mock(return_value=('', ''))
        executor = lun_executor.Executor(root_helper='sudo',
                                         execute=mock_execute)

        executor._execute_as_root('ls', run_as_root=False, root_helper='x')

        mock_execute.assert_called_once_with('ls', run_as_root=False,
                                             root_helper='x')

    def test_set_execute(self):
        executor = lun_executor.Executor(root_helper=None)
        new_execute = mock.Mock(return_value=('out', 'err'))

        executor.set_execute(new_execute)

        self.assertEqual(('out', 'err'), executor._execute('true'))
        new_execute.assert_called_once_with('true')

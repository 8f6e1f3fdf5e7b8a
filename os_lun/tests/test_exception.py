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

from os_lun import exception
from os_lun.tests import base


class LunExceptionTestCase(base.TestCase):

    def test_message_formatting(self):
        exc = exception.DeviceTooSmall(device='sdb', size=100, min_size=200)
        self.assertEqual('Device sdb not large enough after resize: '
                         '100 < 200.', str(exc))
        self.assertEqual(500, exc.kwargs['code'])

    def test_missing_kwargs_keeps_template(self):
        exc = exception.NoISCSIHostsFound()
        self.assertEqual(exception.NoISCSIHostsFound.message, str(exc))

    def test_explicit_message(self):
        exc = exception.NotFound('gone')
        self.assertEqual('gone', str(exc))
        self.assertEqual(404, exc.kwargs['code'])


class ExceptionChainerTestCase(base.TestCase):

    def test_empty(self):
        exc = exception.ExceptionChainer()
        self.assertFalse(exc)
        self.assertEqual('', str(exc))

    def test_context_catches_and_stores(self):
        exc = exception.ExceptionChainer()

        with exc.context(True, 'Removing %s failed', 'sdb'):
            raise ValueError('first')
        with exc.context(True):
            pass
        with exc.context(True, 'Removing %s failed', 'sdc'):
            raise exception.NotFound('second')

        self.assertTrue(exc)
        self.assertIn('Chained Exception #1', str(exc))
        self.assertIn('first', str(exc))
        self.assertIn('Chained Exception #2', str(exc))
        self.assertIn('second', str(exc))

    def test_context_reraises(self):
        exc = exception.ExceptionChainer()

        def fail():
            with exc.context(False):
                raise ValueError('boom')

        self.assertRaises(ValueError, fail)
        self.assertTrue(exc)

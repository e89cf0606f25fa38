#!/usr/bin/env python3
"""
Unit tests for the WebHDFS client.

Validates URL and query construction for each filesystem call, the
authentication methods and translation of RemoteException responses.
"""

import os
import sys
import json
import base64
import threading
import unittest
from http.client import BadStatusLine, IncompleteRead
from unittest.mock import Mock, patch

# Add parent directory to path to import auth_gateway modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from auth_gateway.backends.base import BackendOperationError
from auth_gateway.backends.hdfs import HdfsBackend
from auth_gateway.backends.hdfs_client import (
    WebHdfsClient, DirectoryStoreError, OWNER_EXCLUSIVE, SHARED_GROUP
)


def make_response(status=200, body='', reason='OK'):
    response = Mock()
    response.status = status
    response.reason = reason
    response.read.return_value = body.encode('utf-8')
    return response


def remote_exception(exception, message):
    return json.dumps({'RemoteException': {'exception': exception, 'message': message}})


class TestWebHdfsClient(unittest.TestCase):
    """Test cases for WebHdfsClient requests."""

    def setUp(self):
        self.config = {
            'webhdfs_url': 'http://namenode.test:9870/webhdfs/v1',
            'auth': {'method': 'simple', 'username': 'hdfs'},
        }
        patcher = patch('auth_gateway.backends.hdfs_client.HTTPConnection')
        self.mock_connection_class = patcher.start()
        self.addCleanup(patcher.stop)
        self.connection = Mock()
        self.mock_connection_class.return_value = self.connection
        self.client = WebHdfsClient(self.config)

    def last_request(self):
        args, _ = self.connection.request.call_args
        return args

    def test_exists_true(self):
        self.connection.getresponse.return_value = make_response(
            body=json.dumps({'FileStatus': {'type': 'DIRECTORY'}}))

        self.assertTrue(self.client.exists('/org/test'))

        method, url, body, headers = self.last_request()
        self.assertEqual(method, 'GET')
        self.assertTrue(url.startswith('/webhdfs/v1/org/test?'))
        self.assertIn('op=GETFILESTATUS', url)
        self.assertIn('user.name=hdfs', url)
        self.assertIsNone(body)

    def test_exists_false_on_404(self):
        self.connection.getresponse.return_value = make_response(
            404, remote_exception('FileNotFoundException', 'File does not exist: /org/test'), 'Not Found')

        self.assertFalse(self.client.exists('/org/test'))

    def test_exists_raises_on_server_error(self):
        self.connection.getresponse.return_value = make_response(
            500, remote_exception('StandbyException', 'Operation category READ is not supported'), 'Error')

        with self.assertRaises(DirectoryStoreError) as ctx:
            self.client.exists('/org/test')

        self.assertEqual(ctx.exception.status, 500)
        self.assertEqual(ctx.exception.exception, 'StandbyException')
        self.assertIsInstance(ctx.exception, OSError)

    def test_mkdir(self):
        self.connection.getresponse.return_value = make_response(body='{"boolean": true}')

        self.client.mkdir('/org/test')

        method, url, _, _ = self.last_request()
        self.assertEqual(method, 'PUT')
        self.assertIn('op=MKDIRS', url)

    def test_mkdir_false_raises(self):
        self.connection.getresponse.return_value = make_response(body='{"boolean": false}')

        with self.assertRaises(DirectoryStoreError):
            self.client.mkdir('/org/test')

    def test_set_permission_uses_octal(self):
        self.connection.getresponse.return_value = make_response()

        self.client.set_permission('/org/test', OWNER_EXCLUSIVE)
        self.assertIn('permission=700', self.last_request()[1])

        self.client.set_permission('/org/test/tmp', SHARED_GROUP)
        self.assertIn('permission=770', self.last_request()[1])

    def test_set_owner(self):
        self.connection.getresponse.return_value = make_response()

        self.client.set_owner('/org/test', 'test_admin', 'test')

        method, url, _, _ = self.last_request()
        self.assertEqual(method, 'PUT')
        self.assertIn('op=SETOWNER', url)
        self.assertIn('owner=test_admin', url)
        self.assertIn('group=test', url)

    def test_delete_recursive(self):
        self.connection.getresponse.return_value = make_response(body='{"boolean": true}')

        self.assertTrue(self.client.delete('/org/test', True))

        method, url, _, _ = self.last_request()
        self.assertEqual(method, 'DELETE')
        self.assertIn('op=DELETE', url)
        self.assertIn('recursive=true', url)

    def test_set_acl(self):
        self.connection.getresponse.return_value = make_response()

        self.client.set_acl('/org/test', 'cf')

        _, url, _, _ = self.last_request()
        self.assertIn('op=MODIFYACLENTRIES', url)
        self.assertIn('aclspec=user%3Acf%3Arwx%2Cdefault%3Auser%3Acf%3Arwx', url)

    def test_get_acl_entries(self):
        self.connection.getresponse.return_value = make_response(body=json.dumps({'AclStatus': {
            'entries': ['user:cf:rwx', 'default:user:cf:rwx'], 'owner': 'test_admin', 'group': 'test'
        }}))

        self.assertEqual(self.client.get_acl_entries('/org/test'), ['user:cf:rwx', 'default:user:cf:rwx'])

        method, url, _, _ = self.last_request()
        self.assertEqual(method, 'GET')
        self.assertIn('op=GETACLSTATUS', url)

    def test_has_acl(self):
        granted = json.dumps({'AclStatus': {'entries': ['user:cf:rwx', 'default:user:cf:rwx', 'group::r-x']}})
        access_only = json.dumps({'AclStatus': {'entries': ['user:cf:rwx']}})
        empty = json.dumps({'AclStatus': {'entries': []}})

        for body, expected in [(granted, True), (access_only, False), (empty, False)]:
            self.connection.getresponse.return_value = make_response(body=body)
            self.assertEqual(self.client.has_acl('/org/test', 'cf'), expected, body)

    def test_http_protocol_error_raises_store_error(self):
        self.connection.getresponse.side_effect = BadStatusLine('garbage')

        with self.assertRaises(DirectoryStoreError) as ctx:
            self.client.exists('/org/test')

        self.assertIsInstance(ctx.exception.__cause__, BadStatusLine)
        self.connection.close.assert_called_once()

    def test_incomplete_read_raises_store_error(self):
        response = make_response()
        response.read.side_effect = IncompleteRead(b'{"bool')
        self.connection.getresponse.return_value = response

        with self.assertRaises(DirectoryStoreError):
            self.client.mkdir('/org/test')

    def test_http_protocol_error_is_attributed_to_backend(self):
        self.connection.getresponse.side_effect = BadStatusLine('garbage')
        backend = HdfsBackend('hdfs', self.client, 'cf')

        with self.assertRaises(BackendOperationError) as ctx:
            backend.add_organization('o', 'o')

        self.assertEqual(ctx.exception.backend, 'hdfs')
        self.assertIsInstance(ctx.exception.cause, DirectoryStoreError)

    def test_close_closes_connections_of_all_threads(self):
        connections = [Mock(), Mock()]
        for connection in connections:
            connection.getresponse.return_value = make_response()
        self.mock_connection_class.side_effect = connections

        self.client.set_owner('/a', 'o', 'g')
        worker = threading.Thread(target=self.client.set_owner, args=('/b', 'o', 'g'))
        worker.start()
        worker.join(5)

        self.client.close()

        for connection in connections:
            connection.close.assert_called_once()

    def test_connection_error_raises_and_resets_connection(self):
        self.connection.request.side_effect = ConnectionRefusedError('refused')

        with self.assertRaises(DirectoryStoreError):
            self.client.mkdir('/org/test')

        self.connection.close.assert_called_once()

    def test_connection_reused_within_thread(self):
        self.connection.getresponse.return_value = make_response()

        self.client.set_owner('/a', 'o', 'g')
        self.client.set_owner('/b', 'o', 'g')

        self.mock_connection_class.assert_called_once_with('namenode.test:9870', timeout=30)

    def test_path_is_quoted(self):
        self.connection.getresponse.return_value = make_response()

        self.client.set_owner('/org/my org', 'o', 'g')

        self.assertTrue(self.last_request()[1].startswith('/webhdfs/v1/org/my%20org?'))


class TestWebHdfsAuthentication(unittest.TestCase):
    """Test cases for authentication setup."""

    def test_token_authentication(self):
        client = WebHdfsClient({
            'webhdfs_url': 'http://namenode.test:9870/webhdfs/v1',
            'auth': {'method': 'token', 'token': 'abc123'},
        })
        self.assertEqual(client.auth_params, {'delegation': 'abc123'})
        self.assertEqual(client.auth_headers, {})

    def test_basic_authentication(self):
        client = WebHdfsClient({
            'webhdfs_url': 'http://gateway.test:8443/gateway/default/webhdfs/v1',
            'auth': {'method': 'basic', 'username': 'user', 'password': 'pass'},
        })
        expected = base64.b64encode(b'user:pass').decode()
        self.assertEqual(client.auth_headers['Authorization'], f'Basic {expected}')
        self.assertEqual(client.base_path, '/gateway/default/webhdfs/v1')

    def test_no_authentication(self):
        client = WebHdfsClient({'webhdfs_url': 'http://namenode.test:9870/webhdfs/v1'})
        self.assertEqual(client.auth_params, {})
        self.assertEqual(client.auth_headers, {})

    def test_https_without_verification(self):
        client = WebHdfsClient({
            'webhdfs_url': 'https://namenode.test:9871/webhdfs/v1',
            'verify_ssl': False,
        })
        self.assertIsNotNone(client.ssl_context)

    def test_missing_truststore_raises(self):
        with self.assertRaises(DirectoryStoreError):
            WebHdfsClient({
                'webhdfs_url': 'https://namenode.test:9871/webhdfs/v1',
                'truststore_file': '/nonexistent/ca.pem',
            })


if __name__ == '__main__':
    unittest.main()

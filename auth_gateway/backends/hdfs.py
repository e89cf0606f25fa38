"""
HDFS backend integration.

This module implements the Backend interface against an HDFS directory tree.
Every organization gets a private root with broker, user and tmp
subdirectories; every organization member gets a private home directory
under the organization's user directory.
"""

import logging
from typing import Dict, Any, Optional
from auth_gateway.backends.base import Backend, BackendOperationError
from auth_gateway.backends.hdfs_client import (
    WebHdfsClient, Permission, OWNER_EXCLUSIVE, SHARED_GROUP
)
from auth_gateway.backends.hdfs_paths import PathCreator
from auth_gateway.cancellation import check_cancelled

logger = logging.getLogger(__name__)

ADMIN_SUFFIX = '_admin'


class HdfsBackend(Backend):
    """
    HDFS directory provisioning backend.

    Every step checks the current state before mutating, so repeating an
    operation does not fail and does not change anything the first call
    already created. Permissions and ownership of existing directories are
    never repaired.
    """

    def __init__(self, name: str, client, technical_principal: str,
                 path_creator: Optional[PathCreator] = None):
        """
        Initialize HDFS backend.

        Args:
            name: Backend name
            client: Directory store client (``exists``, ``mkdir``,
                ``set_permission``, ``set_owner``, ``delete``, ``has_acl``,
                ``set_acl``)
            technical_principal: Service principal granted ACLs on org paths
            path_creator: Path layout, defaults to PathCreator()
        """
        super().__init__(name)
        self.client = client
        self.technical_principal = technical_principal
        self.path_creator = path_creator or PathCreator()

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'HdfsBackend':
        """Build an HDFS backend talking to WebHDFS."""
        client = WebHdfsClient(config)
        backend = cls(config['name'], client, config['technical_principal'])
        logger.info(f"Initialized HDFS backend {backend.name} for {client.host}")
        return backend

    def check_health(self) -> bool:
        return self.client.exists('/')

    def create_directory(self, path: str, owner: str, group: str, permission: Permission) -> None:
        """
        Create a directory with the given ownership and permission.

        Does nothing if the path already exists. A failure between steps leaves
        the directory partially initialized.
        """
        if self.client.exists(path):
            logger.debug(f"Directory {path} already exists")
            return

        self.client.mkdir(path)
        self.client.set_permission(path, permission)
        self.client.set_owner(path, owner, group)
        logger.info(f"Created directory {path} owner={owner} group={group} permission={permission}")

    def delete_directory(self, path: str) -> None:
        """Recursively delete a directory, doing nothing if it is missing."""
        if not self.client.exists(path):
            logger.debug(f"Directory {path} does not exist")
            return

        self.client.delete(path, True)
        logger.info(f"Deleted directory {path}")

    def grant_technical_access(self, path: str) -> None:
        """Give the technical principal an ACL on the path unless it already has one."""
        if self.client.has_acl(path, self.technical_principal):
            logger.debug(f"{self.technical_principal} already has access to {path}")
            return

        self.client.set_acl(path, self.technical_principal)
        logger.info(f"Granted {self.technical_principal} access to {path}")

    def add_user(self, user_id: str, user_name: str) -> None:
        # users have no directory until they join an organization
        pass

    def remove_user(self, user_id: str, user_name: str) -> None:
        pass

    def add_organization(self, org_id: str, org_name: str) -> None:
        try:
            org_path = self.path_creator.create_org_path(org_id)
            broker_path = self.path_creator.create_org_broker_path(org_id)
            users_path = self.path_creator.create_org_users_path(org_id)
            tmp_path = self.path_creator.create_org_tmp_path(org_id)
            admin = org_id + ADMIN_SUFFIX

            steps = [
                lambda: self.create_directory(org_path, admin, org_name, OWNER_EXCLUSIVE),
                lambda: self.create_directory(broker_path, admin, org_name, OWNER_EXCLUSIVE),
                lambda: self.create_directory(users_path, admin, org_name, OWNER_EXCLUSIVE),
                lambda: self.create_directory(tmp_path, admin, org_name, SHARED_GROUP),
                lambda: self.grant_technical_access(org_path),
                lambda: self.grant_technical_access(broker_path),
            ]
            for step in steps:
                check_cancelled()
                step()
        except (OSError, ValueError) as e:
            raise BackendOperationError(self.name, 'adding organization', e) from e

    def remove_organization(self, org_id: str, org_name: str) -> None:
        try:
            self.delete_directory(self.path_creator.create_org_path(org_id))
        except (OSError, ValueError) as e:
            raise BackendOperationError(self.name, 'removing organization', e) from e

    def add_user_to_org(self, user_id: str, org_id: str) -> None:
        try:
            user_path = self.path_creator.create_user_path(org_id, user_id)
            self.create_directory(user_path, user_id, org_id, OWNER_EXCLUSIVE)
        except (OSError, ValueError) as e:
            raise BackendOperationError(self.name, 'adding user to organization', e) from e

    def remove_user_from_org(self, user_id: str, org_id: str) -> None:
        try:
            self.delete_directory(self.path_creator.create_user_path(org_id, user_id))
        except (OSError, ValueError) as e:
            raise BackendOperationError(self.name, 'removing user from organization', e) from e

    def close(self) -> None:
        close = getattr(self.client, 'close', None)
        if close:
            close()

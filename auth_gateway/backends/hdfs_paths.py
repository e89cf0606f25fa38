"""
Path layout for organization and user directories in HDFS.
"""

DELIMITER = '/'

ORGS = 'org'
USER = 'user'
BROKER = 'brokers'
TMP = 'tmp'


class PathCreator:
    """Maps organization and user identifiers to their canonical directory paths."""

    def create_org_path(self, org: str) -> str:
        return self._create_path(ORGS, org)

    def create_org_broker_path(self, org: str) -> str:
        return self._create_path(ORGS, org, BROKER)

    def create_org_tmp_path(self, org: str) -> str:
        return self._create_path(ORGS, org, TMP)

    def create_org_users_path(self, org: str) -> str:
        return self._create_path(ORGS, org, USER)

    def create_user_path(self, org: str, user: str) -> str:
        self._check_identifier(user)
        return self._create_path(ORGS, org, USER, user)

    def _create_path(self, *parts: str) -> str:
        self._check_identifier(parts[1])
        return DELIMITER + DELIMITER.join(parts)

    @staticmethod
    def _check_identifier(identifier: str):
        if not identifier:
            raise ValueError("Identifier must not be empty")
        if DELIMITER in identifier:
            raise ValueError(f"Identifier must not contain '{DELIMITER}': {identifier}")

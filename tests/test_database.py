"""Database manager tests."""

from pathlib import Path
from unittest.mock import patch

from opswatch.database.database import DatabaseManager, driver_timeout_args, sqlite_file_path


class TestDriverTimeouts:

    def test_postgresql_bounds_connect_and_statements(self):
        args = driver_timeout_args('postgresql+psycopg2://app:pw@db/app', 5)
        assert args == {'connect_timeout': 5, 'options': '-c statement_timeout=5000'}

    def test_mysql_bounds_connect_and_reads(self):
        args = driver_timeout_args('mysql+pymysql://app:pw@db/app', 3)
        assert args == {'connect_timeout': 3, 'read_timeout': 3, 'write_timeout': 3}

    def test_sub_second_timeout_rounds_up(self):
        assert driver_timeout_args('postgresql://db/app', 0.2)['connect_timeout'] == 1

    def test_sqlite_needs_none(self):
        assert driver_timeout_args('sqlite:///:memory:', 5) == {}

    @patch('opswatch.database.database.create_engine')
    def test_server_engine_gets_driver_timeouts(self, mock_create_engine):
        DatabaseManager('postgresql://app:pw@db/app', connect_timeout=4)

        kwargs = mock_create_engine.call_args.kwargs
        assert kwargs['pool_timeout'] == 4
        assert kwargs['connect_args'] == {'connect_timeout': 4, 'options': '-c statement_timeout=4000'}


class TestSqlitePaths:

    def test_file_url(self):
        assert sqlite_file_path('sqlite:///data/opswatch.db') == Path('data/opswatch.db')

    def test_memory_and_server_urls(self):
        assert sqlite_file_path('sqlite:///:memory:') is None
        assert sqlite_file_path('postgresql://db/app') is None

    def test_ping_on_memory_database(self, db_manager):
        assert db_manager.ping() is True
        assert db_manager.dialect_name == 'sqlite'

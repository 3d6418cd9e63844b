import os

import pytest

from distbuild import const


@pytest.fixture(autouse=True)
def _isolated_settings(tmp_path_factory, monkeypatch):
    """Keep user and system settings out of the test run."""
    for key in list(os.environ):
        if key == 'MAKEOPTS' or key.startswith('DISTBUILD_'):
            monkeypatch.delenv(key)
    confdir = tmp_path_factory.mktemp('conf')
    monkeypatch.setattr(const, 'USER_CONF_FILE', str(confdir / 'user.conf'))
    monkeypatch.setattr(const, 'SYSTEM_CONF_FILE', str(confdir / 'system.conf'))

"""
Change watcher for auto-deploy projects.
"""
from watcher.change_watcher import ChangeWatcher, DEFAULT_DEPLOY_TIMEOUT

__all__ = ['ChangeWatcher', 'DEFAULT_DEPLOY_TIMEOUT']

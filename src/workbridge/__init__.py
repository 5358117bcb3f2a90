"""WorkBridge

Aggregates GitHub, GitLab and Azure DevOps work items behind a single
canonical model and migrates them between platforms.
"""

__version__ = '0.1.0'
__author__ = 'WorkBridge Team'
__email__ = 'team@example.com'

__all__ = ['__version__']

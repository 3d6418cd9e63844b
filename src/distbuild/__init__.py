__title__ = 'distbuild'
__version__ = '0.1.0'

import logging

log = logging.getLogger('promptsmith')

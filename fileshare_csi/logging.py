import re
import logging
from plumbum.commands.modifiers import PipeToLoggerMixin

# mount tools echo their option string on some failures
CREDENTIAL_OPTION = re.compile(r"\b(password|pass|smbpassword)=[^,\s]*", re.IGNORECASE)


@logging.setLoggerClass
class Logger(logging.Logger, PipeToLoggerMixin):
    pass


class RedactCredentials(logging.Filter):
    """Masks credential mount options in log messages"""

    def filter(self, record):
        message = record.getMessage()
        if CREDENTIAL_OPTION.search(message):
            record.msg = CREDENTIAL_OPTION.sub(r"\1=****", message)
            record.args = ()
        return True


logger = logging.getLogger("fileshare-csi")
logger.addFilter(RedactCredentials())


def init_logging(level):
    logging.basicConfig(
        level=level.upper(),
        format="{asctime}|{levelname:7}|{thread:X}|{name:15}| {message}",
        style="{"
    )

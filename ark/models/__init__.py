from ark.models.instance import (  # noqa: F401
    Environment,
    Instance,
    InstanceStatus,
)
from ark.models.product import Product  # noqa: F401
from ark.models.ssh_user import SSHUser  # noqa: F401

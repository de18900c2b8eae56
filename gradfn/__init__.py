from gradfn.config import GradConfig, get_config, set_config
from gradfn.errors import (
    ConfigurationError,
    DomainError,
    GradFnError,
    MissingCachedStateError,
    ShapeMismatchError,
)
from gradfn.tensor import (
    Function,
    FunctionState,
    Operand,
    Operator,
    Variable,
    backward,
    scalar,
)

__version__ = "0.1.0"

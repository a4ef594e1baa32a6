# mrlink/nucleus/naming.py
"""
Pure helpers for service names and callback keys.

A full name is ``name@id``; a short name has no ``@id`` suffix. Callback keys
are derived from topic method names with a fixed prefix table:

    ============  ===========================  =====================
    prefix        example topic                callback key
    ============  ===========================  =====================
    ``publish``   ``publishServoEvent``        ``onServoEvent``
    ``get``       ``getMethodMap``             ``onMethodMap``
    ``on``        ``onServoEvent``             ``onServoEvent``
    (default)     ``registered``               ``onRegistered``
    ============  ===========================  =====================

The ``on`` row only applies when the next character is upper case, so a
callback key maps to itself and ``callback_name`` is idempotent.
"""

SEPARATOR = "@"

_TOPIC_PREFIXES = ("publish", "get")


def capitalize(text: str) -> str:
    """Upper-cases the first character only, leaving the rest untouched."""
    return text[:1].upper() + text[1:]


def is_full_name(name: str) -> bool:
    return SEPARATOR in name


def qualify(name: str, service_id: str) -> str:
    """Returns ``name@service_id`` unless ``name`` is already qualified."""
    if is_full_name(name):
        return name
    return f"{name}{SEPARATOR}{service_id}"


def short_name(name: str) -> str:
    """Strips the ``@id`` suffix, if any."""
    return name.split(SEPARATOR, 1)[0]


def simple_name(type_key: str) -> str:
    """Returns the last dotted segment of a type key, e.g. ``Servo`` for ``org.myrobotlab.service.Servo``."""
    return type_key[type_key.rfind(".") + 1:]


def _is_callback_key(method: str) -> bool:
    return len(method) > 2 and method.startswith("on") and method[2].isupper()


def callback_name(topic_method: str) -> str:
    """
    Maps a topic method to the name of the notification it produces.

    Total over all strings: every input falls into exactly one row of the
    prefix table in the module docstring.
    """
    if _is_callback_key(topic_method):
        return topic_method
    for prefix in _TOPIC_PREFIXES:
        if topic_method.startswith(prefix) and len(topic_method) > len(prefix):
            return "on" + capitalize(topic_method[len(prefix):])
    return "on" + capitalize(topic_method)


def method_key(full_name: str, method: str) -> str:
    """The by-name+method index key for ``full_name`` and a topic or callback method."""
    return f"{full_name}.{callback_name(method)}"

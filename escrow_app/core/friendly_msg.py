FRIENDLY_MESSAGES = {
    "CircuitOpenError": "A required service is temporarily paused. Please try again shortly.",
    "ProviderError": "The payment provider could not process the request. Please try again later.",
    "ConnectionError": "Unable to connect to a required service. Please try again later.",
    "TimeoutError": "The request took too long. Please try again later.",
    "IntegrityError": "This record conflicts with an existing one. Please reload and retry.",
    "OperationalError": "Temporary issue while accessing data. Please try again shortly.",
    "ValueError": "Invalid data received. Please check your input and try again.",
}


def get_friendly_message(error: Exception) -> str:
    for cls in type(error).__mro__:
        message = FRIENDLY_MESSAGES.get(cls.__name__)
        if message:
            return message
    return "Something went wrong on our end. Please try again."

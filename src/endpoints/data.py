"""Welcome message at ``/api/data``.

No category, so the route works but the handler is not listed by
``/api/plugins``.
"""

handler = {
    "name": "Greet user",
    "description": "Greet the user",
    "method": "GET",
    "category": [],
    "alias": ["data"],
    "exec": lambda request: {
        "status": 200,
        "message": (
            "Welcome to DitzzyAPI, Lets get started by visit our documentation on: "
            "https://api.ditzzy.my.id/docs"
        ),
    },
}

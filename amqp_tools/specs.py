import re

BINDING_REGEX = re.compile(r"([^/]+)((?:/[^/]+)+)")
ROUTE_REGEX = re.compile(r"/([^/]+)")


def parse_specifications(specs):
    """ Split command line specifications into queues and bindings

    A specification is either a queue name or a binding of the form
    ``exchange/route[/route...]``. Every route of a binding produces one
    ``{"exchange", "routingKey"}`` entry sharing the same exchange. Anything
    that does not match the binding grammar is taken as a queue name.
    """
    bindings = []
    queues = []
    for spec in specs:
        match = BINDING_REGEX.fullmatch(spec)
        if match:
            for route in ROUTE_REGEX.findall(match.group(2)):
                bindings.append({"exchange": match.group(1), "routingKey": route})
        else:
            queues.append(spec)

    return {"queues": queues, "bindings": bindings}


def specification_routes(specs):
    """Routes a publisher sends to for parsed specifications.

    Bindings are published as-is, queue names through the default exchange.
    """
    routes = [dict(binding) for binding in specs["bindings"]]
    routes.extend({"exchange": "", "routingKey": queue} for queue in specs["queues"])
    return routes

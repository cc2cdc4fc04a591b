"""Server core: routing of incoming JSON-RPC messages to handlers."""
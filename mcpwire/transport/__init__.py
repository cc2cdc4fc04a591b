"""Client and server transports carrying JSON-RPC messages over stdio and SSE."""
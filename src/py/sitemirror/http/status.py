HTTP_STATUS: dict[int, str] = {
	200: "OK",
	204: "No Content",
	206: "Partial Content",
	301: "Moved Permanently",
	302: "Found",
	303: "See Other",
	304: "Not Modified",
	307: "Temporary Redirect",
	308: "Permanent Redirect",
	400: "Bad Request",
	403: "Forbidden",
	404: "Not Found",
	405: "Method Not Allowed",
	500: "Internal Server Error",
	502: "Bad Gateway",
	503: "Service Unavailable",
}

# Statuses that carry a `Location` to follow
HTTP_REDIRECTS: frozenset[int] = frozenset((301, 302, 303, 307, 308))


# EOF

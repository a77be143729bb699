"""Parts for a Gemini server: configuration, CGI and FastCGI gateways, imsg channel and daemon setup."""

__version__ = "0.1.0"
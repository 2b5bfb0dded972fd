[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "dnsrelay"
version = "0.1.0"
description = "DNS upstream clients (plain, TCP, DNS-over-TLS, DNS-over-HTTPS), bootstrap resolution, parallel querying and per-domain upstream routing"
requires-python = ">=3.10"
dependencies = [
    "dnspython",
]
keywords = ["dns", "dns-over-tls", "dns-over-https", "dns-stamps", "resolver", "upstream", "forwarder"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Name Service (DNS)",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["dnsrelay"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

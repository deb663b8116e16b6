# SPDX-License-Identifier: Apache-2.0

"""
Middleware package for request processing.

This package contains middleware components for authentication, permission
checks and error rendering in the donor booking API.
"""

#!/usr/bin/env python3

# __init__.py - EESSI Stratum 1 monitor Click CLI package
# Part of the EESSI Stratum 1 Monitor (eessi-monitor)
#
#    Copyright (C) 2024-2025 The eessi-monitor authors
#
#    This program is free software: you can redistribute it and/or modify
#    it under the terms of the GNU General Public License as published by
#    the Free Software Foundation, version 3.
#
#    This program is distributed in the hope that it will be useful,
#    but WITHOUT ANY WARRANTY; without even the implied warranty of
#    MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
#    GNU General Public License for more details.
#
#    You should have received a copy of the GNU General Public License
#    along with this program.  If not, see <https://www.gnu.org/licenses/>.
#
###############################################################################

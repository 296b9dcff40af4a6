# Copyright (c) Microsoft. All rights reserved.

VERSION = "1.0.0b1"

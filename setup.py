#!/usr/bin/env python
# -*- coding: utf-8 -*-
import setuptools

setuptools.setup()

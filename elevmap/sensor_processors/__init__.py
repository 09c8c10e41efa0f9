"""Sensor models that filter point clouds and compute per-point height variances."""
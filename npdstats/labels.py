"""Label names attached to the system stats metrics."""

# The monitored disk device, e.g. "sda", "sda1".
DEVICE_NAME_LABEL = "device_name"

# The direction of disk operations, e.g. "read", "write".
DIRECTION_LABEL = "direction"

# The state of disk, memory or CPU usage, e.g. "free", "used".
STATE_LABEL = "state"

# The filesystem type of a disk, e.g. "ext4", "vfat".
FS_TYPE_LABEL = "fs_type"

# The mount options of a monitored disk device.
MOUNT_OPTION_LABEL = "mount_option"

# A feature of the guest operating system.
FEATURE_LABEL = "os_feature"

# The value of a guest operating system feature, where one is needed.
VALUE_LABEL = "value"

# The network interface name.
INTERFACE_NAME_LABEL = "interface_name"

# The CPU, e.g. "cpu0".
CPU_LABEL = "cpu"

# The kernel stage in which CPU time was spent.
STAGE_LABEL = "stage"